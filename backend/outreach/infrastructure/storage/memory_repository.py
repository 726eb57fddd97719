"""
In-Memory Pipeline Repository
Process-local store used in development and tests
"""
from typing import Dict, List, Optional, Tuple

from outreach.domain.interfaces.pipeline_repository import PipelineRepository
from outreach.domain.models.campaign import Campaign
from outreach.domain.models.candidate import Candidate
from outreach.domain.models.pipeline import PipelineDefinition
from outreach.domain.models.pipeline_state import CandidatePipelineState


class InMemoryPipelineRepository(PipelineRepository):
    """
    Dict-backed repository.

    Stores and returns deep copies so callers never share mutable objects
    with the store, matching what a database round trip gives you.
    """

    def __init__(self):
        self._campaigns: Dict[str, Campaign] = {}
        self._candidates: Dict[str, Candidate] = {}
        self._definitions: Dict[Tuple[str, int], PipelineDefinition] = {}
        self._states: Dict[Tuple[str, str], CandidatePipelineState] = {}

    # Campaigns
    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        campaign = self._campaigns.get(campaign_id)
        return campaign.model_copy(deep=True) if campaign else None

    async def save_campaign(self, campaign: Campaign) -> None:
        self._campaigns[campaign.id] = campaign.model_copy(deep=True)

    async def list_campaigns(self, status: Optional[str] = None) -> List[Campaign]:
        return [
            c.model_copy(deep=True)
            for c in self._campaigns.values()
            if status is None or c.status.value == status
        ]

    # Candidates
    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        candidate = self._candidates.get(candidate_id)
        return candidate.model_copy(deep=True) if candidate else None

    async def save_candidate(self, candidate: Candidate) -> None:
        self._candidates[candidate.id] = candidate.model_copy(deep=True)

    # Pipeline definitions
    async def save_definition(self, definition: PipelineDefinition) -> None:
        self._definitions[(definition.campaign_id, definition.version)] = definition

    async def get_definition(self, campaign_id: str, version: int) -> Optional[PipelineDefinition]:
        return self._definitions.get((campaign_id, version))

    async def latest_definition(self, campaign_id: str) -> Optional[PipelineDefinition]:
        versions = [d for (cid, _), d in self._definitions.items() if cid == campaign_id]
        return max(versions, key=lambda d: d.version) if versions else None

    # Candidate pipeline states
    async def get_state(self, candidate_id: str, campaign_id: str) -> Optional[CandidatePipelineState]:
        state = self._states.get((candidate_id, campaign_id))
        return state.model_copy(deep=True) if state else None

    async def save_state(self, state: CandidatePipelineState) -> None:
        self._states[state.key] = state.model_copy(deep=True)

    async def list_states(
        self,
        campaign_id: str,
        include_terminal: bool = False
    ) -> List[CandidatePipelineState]:
        return [
            s.model_copy(deep=True)
            for s in self._states.values()
            if s.campaign_id == campaign_id and (include_terminal or not s.is_terminal)
        ]

    async def find_state_by_approval(self, request_id: str) -> Optional[CandidatePipelineState]:
        for state in self._states.values():
            if state.find_approval(request_id):
                return state.model_copy(deep=True)
        return None
