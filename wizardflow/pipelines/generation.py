from __future__ import annotations
import asyncio
import logging
import math
from typing import List, Optional
from wizardflow.core.config import Settings, settings as default_settings
from wizardflow.core.errors import BackendError, GenerationTimeoutError
from wizardflow.core.workflow import BUILD_BLOCK_NAMES, BlockStatus
from wizardflow.pipelines.artifact import normalize_artifact
from wizardflow.schemas.artifact import GeneratedArtifact
from wizardflow.schemas.events import StreamEvent
from wizardflow.schemas.jobs import BuildBlock, PhaseRecord
from wizardflow.schemas.wizard import GenerationRequest
from wizardflow.streaming.client import BackendClient
from wizardflow.streaming.reconnect import ReconnectionManager

log = logging.getLogger(__name__)


class GenerationPipeline:
    """Drives the site generation job and assembles its artifact."""

    def __init__(
        self,
        client: BackendClient,
        *,
        settings: Settings | None = None,
        sleep=asyncio.sleep,
        session_id: str = "-",
    ):
        self._client = client
        self._settings = settings or default_settings
        self._sleep = sleep
        self.session_id = session_id
        self.blocks: List[BuildBlock] = []
        self.progress = 0.0
        self.artifact: Optional[GeneratedArtifact] = None
        self.phase: Optional[PhaseRecord] = None
        self._manager: Optional[ReconnectionManager] = None
        self.reset()

    def reset(self) -> None:
        self.blocks = [BuildBlock(name=name) for name in BUILD_BLOCK_NAMES]
        self.progress = 0.0
        self.artifact = None

    def apply_progress(self, progress: float) -> None:
        progress = max(0.0, min(100.0, float(progress)))
        # out-of-order frames must not move the blocks backwards
        self.progress = max(self.progress, progress)
        count = len(self.blocks)
        block_index = math.floor(self.progress / 100 * count)
        for i, block in enumerate(self.blocks):
            if i < block_index:
                block.status = BlockStatus.COMPLETE
            elif i == block_index:
                block.status = BlockStatus.BUILDING
            else:
                block.status = BlockStatus.PENDING

    def apply_event(self, event: StreamEvent) -> Optional[GeneratedArtifact]:
        if event.is_error:
            raise BackendError.from_message(event.error or event.message or "Website generation failed")
        if event.progress is not None:
            self.apply_progress(event.progress)
        if event.is_complete and event.data is not None:
            self.artifact = normalize_artifact(event.data, encoded=event.encoded)
            self.apply_progress(100)
            log.info("Generation complete with %d files", len(self.artifact.files),
                     extra={"session_id": self.session_id, "stage": "build"})
        return self.artifact

    async def run(self, request: GenerationRequest) -> Optional[GeneratedArtifact]:
        self.reset()
        self.phase = PhaseRecord(name="generation")
        try:
            artifact = await asyncio.wait_for(self._consume(request), timeout=self._settings.generation_timeout_s)
        except asyncio.TimeoutError as e:
            await self.abort()
            self.phase.close("timeout")
            log.error("Generation timed out after %ss", self._settings.generation_timeout_s,
                      extra={"session_id": self.session_id, "stage": "build"})
            raise GenerationTimeoutError(
                f"Generation exceeded {self._settings.generation_timeout_s}s"
            ) from e
        except Exception:
            self.phase.close("failed")
            raise
        self.phase.close("complete" if artifact is not None else "aborted")
        return artifact

    async def _consume(self, request: GenerationRequest) -> Optional[GeneratedArtifact]:
        manager = ReconnectionManager(
            lambda: self._client.open_generation(request),
            settings=self._settings,
            sleep=self._sleep,
            session_id=self.session_id,
            label="generation stream",
        )
        self._manager = manager
        events = manager.events(is_finished=lambda: self.artifact is not None)
        try:
            async for event in events:
                self.apply_event(event)
        finally:
            await events.aclose()
            if self._manager is manager:
                self._manager = None
        if self.artifact is None and not manager.aborted:
            raise BackendError("Generation stream ended without a result", retryable=True)
        return self.artifact

    async def abort(self) -> None:
        manager = self._manager
        if manager is not None:
            await manager.abort()
