"""
Pipeline Catalog
Publishes and resolves versioned pipeline definitions per campaign
"""
import logging
from typing import Dict, Optional, Sequence, Tuple

from outreach.domain.errors import NotFoundError, PipelineValidationError
from outreach.domain.interfaces.pipeline_repository import PipelineRepository
from outreach.domain.models.pipeline import PipelineDefinition, PipelineStageTemplate

logger = logging.getLogger(__name__)


class PipelineCatalog:
    """
    Versioned stage lists.

    Definitions are immutable: publishing always creates version latest+1.
    Resolved versions are cached since they never change.
    """

    def __init__(self, repository: PipelineRepository):
        self._repository = repository
        self._cache: Dict[Tuple[str, int], PipelineDefinition] = {}

    async def publish(self, campaign_id: str, stages: Sequence[PipelineStageTemplate]) -> PipelineDefinition:
        """
        Validate and store a new pipeline version.

        Raises:
            PipelineValidationError: empty, non-contiguous or negative-delay stage list
        """
        issues = PipelineDefinition.check_stages(stages)
        if issues:
            raise PipelineValidationError(
                f"Invalid pipeline for campaign {campaign_id}: {'; '.join(issues)}",
                issues=issues
            )

        latest = await self._repository.latest_definition(campaign_id)
        version = latest.version + 1 if latest else 1
        definition = PipelineDefinition(campaign_id=campaign_id, version=version, stages=tuple(stages))

        await self._repository.save_definition(definition)
        self._cache[(campaign_id, version)] = definition
        logger.info(
            f"Published pipeline v{version} for campaign {campaign_id} "
            f"({len(definition.stages)} stages)"
        )
        return definition

    async def latest(self, campaign_id: str) -> Optional[PipelineDefinition]:
        definition = await self._repository.latest_definition(campaign_id)
        if definition:
            self._cache[(campaign_id, definition.version)] = definition
        return definition

    async def require_latest(self, campaign_id: str) -> PipelineDefinition:
        definition = await self.latest(campaign_id)
        if definition is None:
            raise NotFoundError(f"Campaign {campaign_id} has no pipeline")
        return definition

    async def resolve(self, campaign_id: str, version: int) -> PipelineDefinition:
        """Definition pinned by a candidate. Raises NotFoundError if missing."""
        cached = self._cache.get((campaign_id, version))
        if cached:
            return cached
        definition = await self._repository.get_definition(campaign_id, version)
        if definition is None:
            raise NotFoundError(f"Pipeline v{version} not found for campaign {campaign_id}")
        self._cache[(campaign_id, version)] = definition
        return definition
