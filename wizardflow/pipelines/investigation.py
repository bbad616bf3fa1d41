from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, List, Optional
from wizardflow.core.config import Settings, settings as default_settings
from wizardflow.core.controller import StageController
from wizardflow.core.errors import BackendError, StreamConnectionError, StreamParseError
from wizardflow.core.guard import AutoAdvanceGuard
from wizardflow.core.workflow import (
    CATEGORIES,
    CATEGORY_BY_KEY,
    CATEGORY_BY_STAGE,
    CATEGORY_COUNT,
    CategoryStatus,
    WizardStage,
    next_category_stage,
)
from wizardflow.persistence.progress import ProgressStore
from wizardflow.schemas.events import StreamEvent
from wizardflow.schemas.jobs import CategoryJob, PhaseRecord
from wizardflow.schemas.wizard import InvestigationRequest
from wizardflow.streaming.client import BackendClient, StreamHandle
from wizardflow.streaming.reconnect import ConnectionState, ReconnectionManager

log = logging.getLogger(__name__)

DONE_STATUSES = (CategoryStatus.COMPLETE, CategoryStatus.FAILED)


def clamp_progress(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


class InvestigationPipeline:
    """Drives the 13-category audit stream to completion.

    Owns the category jobs, their phase records and the investigation
    stream; stage changes go through the controller and the auto-advance
    guard.
    """

    def __init__(
        self,
        controller: StageController,
        guard: AutoAdvanceGuard,
        client: BackendClient,
        progress_store: ProgressStore,
        *,
        settings: Settings | None = None,
        sleep=asyncio.sleep,
    ):
        self._controller = controller
        self._guard = guard
        self._client = client
        self._store = progress_store
        self._settings = settings or default_settings
        self._sleep = sleep

        self.jobs: List[CategoryJob] = []
        self.phases: Dict[int, PhaseRecord] = {}
        self.completions: List[int] = []
        self.run_phase: Optional[PhaseRecord] = None
        self.results: Optional[Dict[str, Any]] = None
        self.topic: Optional[str] = None
        self.parse_errors = 0
        self.connection_state = ConnectionState.IDLE
        self._request: Optional[InvestigationRequest] = None
        self._manager: Optional[ReconnectionManager] = None
        self.initialize()

    @property
    def session_id(self) -> str:
        return self._controller.session_id

    def _extra(self, stage: Any = None) -> dict:
        return {"session_id": self.session_id, "stage": str(stage or self._controller.stage)}

    # -- job bookkeeping ---------------------------------------------------

    def initialize(self) -> None:
        self.jobs = [CategoryJob.initial(i) for i in range(CATEGORY_COUNT)]
        self.phases = {}
        self.completions = []
        self.results = None

    @property
    def active_job(self) -> Optional[CategoryJob]:
        return next((j for j in self.jobs if j.status == CategoryStatus.IN_PROGRESS), None)

    @property
    def all_complete(self) -> bool:
        return all(j.status == CategoryStatus.COMPLETE for j in self.jobs)

    @property
    def failed_jobs(self) -> List[CategoryJob]:
        return [j for j in self.jobs if j.status == CategoryStatus.FAILED]

    @property
    def has_progress(self) -> bool:
        return any(j.status != CategoryStatus.PENDING or j.progress > 0 for j in self.jobs)

    @property
    def is_streaming(self) -> bool:
        return self._manager is not None

    def is_finished(self) -> bool:
        return self.results is not None

    def accepts_end(self) -> bool:
        return self.results is not None or all(j.status in DONE_STATUSES for j in self.jobs)

    def resume_index(self) -> Optional[int]:
        """First category that still needs work; failed ones wait for an explicit retry."""
        for job in self.jobs:
            if job.status not in DONE_STATUSES:
                return job.index
        return None

    def job_for_stage(self, stage: WizardStage) -> Optional[CategoryJob]:
        definition = CATEGORY_BY_STAGE.get(stage)
        return self.jobs[definition.index] if definition else None

    # -- event handling ----------------------------------------------------

    def _resolve_index(self, event: StreamEvent) -> Optional[int]:
        if event.category_index is not None and 0 <= event.category_index < CATEGORY_COUNT:
            return event.category_index
        definition = CATEGORY_BY_KEY.get(event.stage or "")
        return definition.index if definition else None

    def apply_event(self, event: StreamEvent) -> None:
        if event.is_complete:
            if event.data is not None:
                self._set_results(event.data)
            return

        index = self._resolve_index(event)
        if index is None:
            if event.is_error:
                raise BackendError.from_message(event.error or event.message or "Investigation failed")
            # overall progress or a legacy phase name; nothing to track
            return

        job = self.jobs[index]
        if job.status in DONE_STATUSES:
            log.debug("Ignoring event for %s category %s", job.status.value, job.key, extra=self._extra())
            return

        if event.is_error:
            self._fail(job, event.error or event.message or "Category analysis failed")
            self._persist()
            return

        self._activate(job)
        if event.check_scores:
            job.check_scores = {**job.check_scores, **event.check_scores}

        progress = event.category_progress
        if progress is None and event.status == "complete":
            progress = 100
        if progress is not None:
            job.progress = max(job.progress, clamp_progress(progress))

        if job.progress >= 100 or event.status == "complete":
            self._complete(job)
        self._persist()

    def _activate(self, job: CategoryJob) -> None:
        if job.status == CategoryStatus.IN_PROGRESS:
            return
        for other in self.jobs:
            if other is job or other.status != CategoryStatus.IN_PROGRESS:
                continue
            # completion only ever comes from the job's own frames
            log.warning("Category %s returned to pending at %.0f%% for %s",
                        other.key, other.progress, job.key, extra=self._extra())
            other.status = CategoryStatus.PENDING
        job.status = CategoryStatus.IN_PROGRESS
        if job.index not in self.phases:
            self.phases[job.index] = PhaseRecord(name=job.name, index=job.index)
        log.info("Category %d/%d started: %s", job.index + 1, CATEGORY_COUNT, job.name, extra=self._extra(job.stage))

    def _complete(self, job: CategoryJob) -> None:
        job.status = CategoryStatus.COMPLETE
        job.progress = 100
        job.error = None
        phase = self.phases.setdefault(job.index, PhaseRecord(name=job.name, index=job.index))
        phase.close("complete")
        self.completions.append(job.index)
        log.info("Category %d/%d complete: %s", job.index + 1, CATEGORY_COUNT, job.name, extra=self._extra(job.stage))
        self._on_job_complete(job)

    def _fail(self, job: CategoryJob, message: str) -> None:
        job.status = CategoryStatus.FAILED
        job.error = message
        phase = self.phases.setdefault(job.index, PhaseRecord(name=job.name, index=job.index))
        phase.close("failed")
        log.error("Category %s failed: %s", job.key, message, extra=self._extra(job.stage))

    def _set_results(self, data: Any) -> None:
        if not isinstance(data, dict):
            data = {"value": data}
        self.results = data
        if not self._controller.is_final:
            self._controller.patch(investigation_results=data)

    def summary(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "categories": [
                {
                    "key": job.key,
                    "name": job.name,
                    "index": job.index,
                    "status": job.status.value,
                    "checkScores": dict(job.check_scores),
                }
                for job in self.jobs
            ],
        }

    # -- auto-advance ------------------------------------------------------

    def _on_job_complete(self, job: CategoryJob) -> None:
        self._schedule_advance()

    def _after_advance(self, stage: WizardStage) -> None:
        # landed on a category that finished while the advance was pending
        self._schedule_advance()

    def _schedule_advance(self) -> None:
        """Queue the move off the current category once its job is complete."""
        if self._controller.is_final:
            return
        stage = self._controller.stage
        current = self.job_for_stage(stage)
        if current is None or current.status != CategoryStatus.COMPLETE:
            return
        if self.all_complete:
            self._guard.schedule(
                expected_stage=stage,
                target_stage=WizardStage.BUILD,
                delay=self._settings.build_grace_delay_s,
                reason="investigation complete",
                precondition=lambda: self.all_complete,
            )
            return
        target = next_category_stage(current.index)
        if target is None:
            return
        self._guard.schedule(
            expected_stage=stage,
            target_stage=target,
            delay=self._settings.auto_advance_delay_s,
            reason=f"{current.name} complete",
            on_commit=self._after_advance,
        )

    # -- persistence -------------------------------------------------------

    def _persist(self) -> None:
        if self.topic:
            self._store.save(self.topic, self.jobs)

    def restore_progress(self, topic: str) -> bool:
        """Reload saved jobs for ``topic``; called on entering the first category stage."""
        if self.is_streaming or (topic == self.topic and self.has_progress):
            return False
        self._store.flush()
        jobs = self._store.load(topic)
        if jobs is None:
            if self.topic != topic:
                self.initialize()
                self.topic = topic
            return False
        self.initialize()
        self.jobs = jobs
        self.topic = topic
        return True

    # -- streaming ---------------------------------------------------------

    async def _open(self) -> StreamHandle:
        request = self._request.model_copy(update={"resume_from_category": self.resume_index() or None})
        return await self._client.open_investigation(request)

    def _connection_changed(self, state: ConnectionState, attempt: int) -> None:
        self.connection_state = state

    def _parse_error(self, error: StreamParseError) -> None:
        self.parse_errors += 1

    async def run(self, request: InvestigationRequest) -> Optional[Dict[str, Any]]:
        if request.topic != self.topic:
            self.initialize()
        self.topic = request.topic
        self._request = request
        if self.results is not None and self.all_complete:
            return self.results

        phase = PhaseRecord(name="investigation")
        self.run_phase = phase
        manager = ReconnectionManager(
            self._open,
            settings=self._settings,
            sleep=self._sleep,
            on_state_change=self._connection_changed,
            on_parse_error=self._parse_error,
            session_id=self.session_id,
            label="investigation stream",
        )
        self._manager = manager
        events = manager.events(is_finished=self.is_finished, accept_end=self.accepts_end)
        try:
            async for event in events:
                self.apply_event(event)
        except StreamConnectionError:
            self._store.save_now(self.topic, self.jobs)
            phase.close("disconnected")
            raise
        except BackendError:
            self._store.save_now(self.topic, self.jobs)
            phase.close("failed")
            raise
        finally:
            await events.aclose()
            if self._manager is manager:
                self._manager = None

        if manager.aborted:
            phase.close("aborted")
            return self.results
        if self.results is None and self.all_complete:
            self._set_results(self.summary())
        phase.close("complete" if self.all_complete else "incomplete")
        self._store.flush()
        return self.results

    async def resume_from_category(self, index: int) -> Optional[Dict[str, Any]]:
        """Retry a single category, leaving every other job as it is."""
        if not 0 <= index < CATEGORY_COUNT:
            raise ValueError(f"category index out of range: {index}")
        if self._request is None:
            raise RuntimeError("no investigation to resume")

        await self.abort()
        self.jobs[index] = CategoryJob.initial(index)
        self.phases.pop(index, None)
        self.results = None
        self._persist()
        log.info("Resuming from category %d (%s)", index + 1, CATEGORIES[index].name, extra=self._extra())
        return await self.run(self._request.model_copy(update={"resume_from_category": index}))

    async def abort(self) -> None:
        manager, self._manager = self._manager, None
        if manager is not None:
            await manager.abort()

    def phase_report(self) -> List[Dict[str, Any]]:
        records = [self.run_phase] if self.run_phase else []
        records += [self.phases[i] for i in sorted(self.phases)]
        return [
            {**record.model_dump(mode="json"), "durationSeconds": record.duration_seconds}
            for record in records
        ]
