"""
Supabase Pipeline Repository
Persists campaigns, candidates, pipeline versions and candidate states in Supabase
"""
import logging
from typing import Any, Dict, List, Optional

from supabase import Client

from outreach.domain.interfaces.pipeline_repository import PipelineRepository
from outreach.domain.models.campaign import Campaign
from outreach.domain.models.candidate import Candidate
from outreach.domain.models.pipeline import PipelineDefinition
from outreach.domain.models.pipeline_state import CandidatePipelineState

logger = logging.getLogger(__name__)


class SupabasePipelineRepository(PipelineRepository):
    """
    Table layout:
    - campaigns (id pk; job_spec and rate_limits as jsonb)
    - candidates (id pk; profile as jsonb)
    - pipeline_definitions (campaign_id, version) pk; stages as jsonb
    - candidate_pipeline_states (candidate_id, campaign_id) pk; approvals as jsonb,
      approval_ids text[] for request lookups
    """

    CAMPAIGNS = "campaigns"
    CANDIDATES = "candidates"
    DEFINITIONS = "pipeline_definitions"
    STATES = "candidate_pipeline_states"

    def __init__(self, client: Client):
        self._supabase = client

    @staticmethod
    def _first(response) -> Optional[Dict[str, Any]]:
        return response.data[0] if response.data else None

    # Campaigns
    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        response = self._supabase.table(self.CAMPAIGNS).select("*").eq("id", campaign_id).limit(1).execute()
        row = self._first(response)
        return Campaign(**row) if row else None

    async def save_campaign(self, campaign: Campaign) -> None:
        self._supabase.table(self.CAMPAIGNS).upsert(campaign.model_dump(mode="json")).execute()

    async def list_campaigns(self, status: Optional[str] = None) -> List[Campaign]:
        query = self._supabase.table(self.CAMPAIGNS).select("*")
        if status:
            query = query.eq("status", status)
        response = query.execute()
        return [Campaign(**row) for row in response.data or []]

    # Candidates
    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        response = self._supabase.table(self.CANDIDATES).select("*").eq("id", candidate_id).limit(1).execute()
        row = self._first(response)
        return Candidate(**row) if row else None

    async def save_candidate(self, candidate: Candidate) -> None:
        self._supabase.table(self.CANDIDATES).upsert(candidate.model_dump(mode="json")).execute()

    # Pipeline definitions
    async def save_definition(self, definition: PipelineDefinition) -> None:
        self._supabase.table(self.DEFINITIONS).insert(definition.model_dump(mode="json")).execute()
        logger.debug(f"Stored pipeline v{definition.version} for campaign {definition.campaign_id}")

    async def get_definition(self, campaign_id: str, version: int) -> Optional[PipelineDefinition]:
        response = self._supabase.table(self.DEFINITIONS).select("*").eq(
            "campaign_id", campaign_id
        ).eq("version", version).limit(1).execute()
        row = self._first(response)
        return PipelineDefinition(**row) if row else None

    async def latest_definition(self, campaign_id: str) -> Optional[PipelineDefinition]:
        response = self._supabase.table(self.DEFINITIONS).select("*").eq(
            "campaign_id", campaign_id
        ).order("version", desc=True).limit(1).execute()
        row = self._first(response)
        return PipelineDefinition(**row) if row else None

    # Candidate pipeline states
    @staticmethod
    def _state_row(state: CandidatePipelineState) -> Dict[str, Any]:
        row = state.model_dump(mode="json")
        row["approval_ids"] = [a.id for a in state.approvals]
        return row

    @staticmethod
    def _state_from_row(row: Dict[str, Any]) -> CandidatePipelineState:
        data = dict(row)
        data.pop("approval_ids", None)
        return CandidatePipelineState(**data)

    async def get_state(self, candidate_id: str, campaign_id: str) -> Optional[CandidatePipelineState]:
        response = self._supabase.table(self.STATES).select("*").eq(
            "candidate_id", candidate_id
        ).eq("campaign_id", campaign_id).limit(1).execute()
        row = self._first(response)
        return self._state_from_row(row) if row else None

    async def save_state(self, state: CandidatePipelineState) -> None:
        self._supabase.table(self.STATES).upsert(
            self._state_row(state),
            on_conflict="candidate_id,campaign_id"
        ).execute()

    async def list_states(
        self,
        campaign_id: str,
        include_terminal: bool = False
    ) -> List[CandidatePipelineState]:
        query = self._supabase.table(self.STATES).select("*").eq("campaign_id", campaign_id)
        if not include_terminal:
            query = query.is_("terminal", "null")
        response = query.execute()
        return [self._state_from_row(row) for row in response.data or []]

    async def find_state_by_approval(self, request_id: str) -> Optional[CandidatePipelineState]:
        response = self._supabase.table(self.STATES).select("*").contains(
            "approval_ids", [request_id]
        ).limit(1).execute()
        row = self._first(response)
        return self._state_from_row(row) if row else None
