from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from services.crm_client import CRMClient
from services.crm_fields import DEFAULT_PIPELINE_STAGES
from utils.exceptions import AppError

logger = logging.getLogger(__name__)


class PipelineStageCache:
    """
    Stage name -> stage id for one CRM pipeline, loaded lazily and reloaded
    after ttl_seconds or on refresh(). If the CRM cannot be reached before the
    first successful load, the known stage ids are used.
    """

    def __init__(
        self,
        crm: CRMClient,
        pipeline_id: str,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._crm = crm
        self.pipeline_id = pipeline_id
        self._ttl = ttl_seconds
        self._clock = clock
        self._stages: dict[str, str] = {}
        self._loaded_at: Optional[float] = None

    @property
    def is_stale(self) -> bool:
        return self._loaded_at is None or self._clock() - self._loaded_at >= self._ttl

    async def refresh(self) -> dict[str, str]:
        pipelines = await self._crm.get_pipelines()
        pipeline = next((p for p in pipelines if p.get("id") == self.pipeline_id), None)
        if pipeline is None:
            logger.warning("Pipeline %s not found in CRM; keeping previous stages", self.pipeline_id)
            stages = self._stages or dict(DEFAULT_PIPELINE_STAGES)
        else:
            stages = {s["name"]: s["id"] for s in pipeline.get("stages") or [] if s.get("name") and s.get("id")}
        self._stages = stages
        self._loaded_at = self._clock()
        return dict(self._stages)

    def invalidate(self) -> None:
        self._loaded_at = None

    async def get_stage_id(self, name: str) -> Optional[str]:
        if self.is_stale:
            try:
                await self.refresh()
            except AppError as e:
                logger.warning("Could not load pipeline stages: %s", e)
                if not self._stages:
                    self._stages = dict(DEFAULT_PIPELINE_STAGES)
        return self._stages.get(name)
