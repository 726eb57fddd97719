"""
Message Generator Interface
External capability that proposes outbound text for a stage
"""
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel

from outreach.domain.models.campaign import Campaign
from outreach.domain.models.candidate import Candidate
from outreach.domain.models.pipeline import PipelineStageTemplate


class ProposedContent(BaseModel):
    """Text proposed for a stage plus the reasoning shown to approvers"""
    text: str = ""
    reasoning: Optional[str] = None


class MessageGenerator(ABC):
    """Decides what text to send; the engine only decides when."""

    @abstractmethod
    async def generate(
        self,
        stage: PipelineStageTemplate,
        candidate: Candidate,
        campaign: Campaign
    ) -> ProposedContent:
        """Propose content for `stage`"""
        pass
