"""
Pipeline Repository Interface
Persistence contract for campaigns, candidates, pipeline versions and states
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from outreach.domain.models.campaign import Campaign
from outreach.domain.models.candidate import Candidate
from outreach.domain.models.pipeline import PipelineDefinition
from outreach.domain.models.pipeline_state import CandidatePipelineState


class PipelineRepository(ABC):
    """
    Durable store read and written by the engine.

    Implementations must return the engine's own prior writes (linearizable
    per entity). Returned objects are owned by the caller.
    """

    # Campaigns
    @abstractmethod
    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        pass

    @abstractmethod
    async def save_campaign(self, campaign: Campaign) -> None:
        pass

    @abstractmethod
    async def list_campaigns(self, status: Optional[str] = None) -> List[Campaign]:
        pass

    # Candidates
    @abstractmethod
    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        pass

    @abstractmethod
    async def save_candidate(self, candidate: Candidate) -> None:
        pass

    # Pipeline definitions
    @abstractmethod
    async def save_definition(self, definition: PipelineDefinition) -> None:
        pass

    @abstractmethod
    async def get_definition(self, campaign_id: str, version: int) -> Optional[PipelineDefinition]:
        pass

    @abstractmethod
    async def latest_definition(self, campaign_id: str) -> Optional[PipelineDefinition]:
        pass

    # Candidate pipeline states
    @abstractmethod
    async def get_state(self, candidate_id: str, campaign_id: str) -> Optional[CandidatePipelineState]:
        pass

    @abstractmethod
    async def save_state(self, state: CandidatePipelineState) -> None:
        pass

    @abstractmethod
    async def list_states(
        self,
        campaign_id: str,
        include_terminal: bool = False
    ) -> List[CandidatePipelineState]:
        pass

    @abstractmethod
    async def find_state_by_approval(self, request_id: str) -> Optional[CandidatePipelineState]:
        """State owning the approval request `request_id`"""
        pass
