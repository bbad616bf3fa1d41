from __future__ import annotations
import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, Optional
from sqlalchemy.orm import Session
from wizardflow.core.config import Settings, settings as default_settings
from wizardflow.core.controller import StageController
from wizardflow.core.guard import AutoAdvanceGuard
from wizardflow.core.history import HistoryStack
from wizardflow.core.workflow import FIRST_CATEGORY_STAGE, WizardStage, is_category_stage
from wizardflow.db.session import SessionLocal
from wizardflow.persistence.progress import PROGRESS_KEY, ProgressStore
from wizardflow.persistence.slot import SnapshotSlot
from wizardflow.persistence.store import WIZARD_STATE_KEY, PersistenceStore
from wizardflow.pipelines.artifact import normalize_artifact
from wizardflow.pipelines.generation import GenerationPipeline
from wizardflow.pipelines.investigation import InvestigationPipeline
from wizardflow.schemas.artifact import GeneratedArtifact
from wizardflow.schemas.wizard import GenerationRequest, InvestigationRequest, WizardState
from wizardflow.streaming.client import BackendClient

log = logging.getLogger(__name__)

# Changes worth an undo step.
HISTORY_FIELDS = (
    "stage",
    "selected_package",
    "selected_design_template",
    "selected_content_template",
    "image_source",
    "requirements",
    "generated_artifact",
)


class WizardEngine:
    """Wires the controller, pipelines, guard, stores and history into one wizard session."""

    def __init__(
        self,
        client: BackendClient | None = None,
        *,
        settings: Settings | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        sleep=asyncio.sleep,
        session_id: str | None = None,
    ):
        self.settings = settings or default_settings
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self.client = client or BackendClient(self.settings)

        self.controller = StageController(session_id=self.session_id)
        self.history = HistoryStack(self.settings.history_capacity)
        self.guard = AutoAdvanceGuard(self.controller, sleep=sleep)
        self.store = PersistenceStore(
            SnapshotSlot(WIZARD_STATE_KEY, session_factory),
            settings=self.settings, sleep=sleep, session_id=self.session_id,
        )
        self.progress_store = ProgressStore(
            SnapshotSlot(PROGRESS_KEY, session_factory),
            settings=self.settings, sleep=sleep, session_id=self.session_id,
        )
        self.investigation = InvestigationPipeline(
            self.controller, self.guard, self.client, self.progress_store,
            settings=self.settings, sleep=sleep,
        )
        self.generation = GenerationPipeline(
            self.client, settings=self.settings, sleep=sleep, session_id=self.session_id,
        )
        self._replaying = False
        self.controller.subscribe(self._on_state_change)

    @property
    def state(self) -> WizardState:
        return self.controller.state

    @property
    def stage(self) -> WizardStage:
        return self.controller.stage

    @property
    def topic(self) -> Optional[str]:
        return self.state.requirements.get("topic")

    def _extra(self) -> dict:
        return {"session_id": self.session_id, "stage": str(self.stage)}

    def _on_state_change(self, old: WizardState, new: WizardState) -> None:
        self.store.save(new)
        if not self._replaying and any(getattr(old, f) != getattr(new, f) for f in HISTORY_FIELDS):
            self.history.push(new)
        if new.stage == FIRST_CATEGORY_STAGE and old.stage != new.stage and self.topic:
            self.investigation.restore_progress(self.topic)

    def _replay(self, state: WizardState) -> bool:
        self._replaying = True
        try:
            return self.controller.replace(state)
        finally:
            self._replaying = False

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> WizardState:
        """Resume from the persisted snapshot, if one survives the restore rules."""
        snapshot = self.store.restore()
        if snapshot is not None:
            self._replay(snapshot.to_state())
        self.history.clear()
        self.history.push(self.state)
        log.info("Wizard session started", extra=self._extra())
        return self.state

    async def shutdown(self) -> None:
        self.guard.cancel()
        await self.investigation.abort()
        await self.generation.abort()
        self.store.flush()
        self.progress_store.flush()
        log.info("Wizard session closed", extra=self._extra())

    async def reset(self) -> bool:
        if self.controller.is_final:
            log.warning("Reset ignored on final stage", extra=self._extra())
            return False
        self.guard.cancel()
        await self.investigation.abort()
        await self.generation.abort()
        self.controller.reset()
        self.store.clear()
        self.progress_store.clear()
        self.investigation.initialize()
        self.investigation.topic = None
        self.generation.reset()
        self.history.clear()
        self.history.push(self.state)
        return True

    # -- selections --------------------------------------------------------

    def select_package(self, package: str) -> WizardState:
        if self.controller.is_final:
            return self.state
        self.controller.patch(selected_package=package)
        self.controller.transition(WizardStage.TEMPLATE_SELECT)
        return self.state

    def select_templates(
        self,
        design: Dict[str, Any] | None = None,
        content: Dict[str, Any] | None = None,
        image_source: str | None = None,
    ) -> WizardState:
        if self.controller.is_final:
            return self.state
        changes: Dict[str, Any] = {}
        if design is not None:
            changes["selected_design_template"] = design
        if content is not None:
            changes["selected_content_template"] = content
        if image_source is not None:
            changes["image_source"] = image_source
        if changes:
            self.controller.patch(**changes)
        return self.state

    def update_requirements(self, **fields: Any) -> WizardState:
        if self.controller.is_final:
            return self.state
        return self.controller.update(
            lambda s: s.model_copy(update={"requirements": {**s.requirements, **fields}})
        )

    # -- investigation -----------------------------------------------------

    async def run_investigation(self, topic: str | None = None, **descriptors: Any) -> Optional[Dict[str, Any]]:
        topic = topic or self.topic
        if not topic:
            raise ValueError("an investigation needs a topic")
        if self.controller.is_final:
            return None

        self.update_requirements(topic=topic)
        if is_category_stage(self.stage):
            self.investigation.restore_progress(topic)
        else:
            self.controller.transition(FIRST_CATEGORY_STAGE)
        request = InvestigationRequest(topic=topic, **descriptors)
        return await self.investigation.run(request)

    async def retry_category(self, index: int) -> Optional[Dict[str, Any]]:
        if self.controller.is_final:
            return None
        return await self.investigation.resume_from_category(index)

    def confirm_advance(self) -> bool:
        return self.guard.confirm()

    def cancel_advance(self) -> None:
        self.guard.cancel()

    # -- generation --------------------------------------------------------

    def _generation_request(self) -> GenerationRequest:
        state = self.state
        return GenerationRequest(
            requirements=state.requirements,
            investigation=state.investigation_results or self.investigation.results,
            selected_design_templates=[state.selected_design_template] if state.selected_design_template else [],
            selected_content_templates=[state.selected_content_template] if state.selected_content_template else [],
        )

    async def run_generation(self) -> Optional[GeneratedArtifact]:
        if self.controller.is_final:
            return None
        self.guard.cancel()
        self.controller.transition(WizardStage.BUILD)
        artifact = await self.generation.run(self._generation_request())
        if artifact is None or self.stage != WizardStage.BUILD:
            return artifact
        self.controller.patch(generated_artifact=artifact.model_dump(mode="json"))
        self.controller.transition(WizardStage.REVIEW)
        return artifact

    def current_artifact(self) -> Optional[GeneratedArtifact]:
        raw = self.state.generated_artifact
        return GeneratedArtifact.model_validate(raw) if raw else None

    async def refine(self, message: str) -> Dict[str, Any]:
        """Send a chat refinement and merge any updated site it returns."""
        reply = await self.client.refine(message, self.current_artifact())
        updated = reply.get("website") or reply.get("artifact")
        answer = reply.get("message") or reply.get("response") or ""

        def apply(s: WizardState) -> WizardState:
            if s.stage == WizardStage.FINAL:
                return s
            changes: Dict[str, Any] = {
                "messages": [*s.messages, {"role": "user", "content": message}, {"role": "assistant", "content": answer}],
            }
            if updated:
                artifact = normalize_artifact(updated, encoded=reply.get("encoded"))
                changes["generated_artifact"] = artifact.model_dump(mode="json")
                changes["redesign_count"] = s.redesign_count + 1
            return s.model_copy(update=changes)

        self.controller.update(apply)
        return reply

    async def download_package(self) -> bytes:
        artifact = self.current_artifact()
        if artifact is None:
            raise ValueError("nothing generated yet")
        return await self.client.download_package(artifact)

    def finalize(self) -> WizardState:
        if self.state.generated_artifact is None:
            raise ValueError("cannot finalize without a generated site")
        self.guard.cancel()
        self.controller.transition(WizardStage.FINAL)
        self.store.save_now(self.state)
        return self.state

    def mark_completed(self) -> WizardState:
        """Close out a finished project so the next start is a fresh one."""
        self.controller.transition(WizardStage.COMPLETED)
        self.store.save_now(self.state)
        self.progress_store.clear()
        return self.state

    # -- navigation --------------------------------------------------------

    def back(self) -> Optional[WizardStage]:
        if self.controller.is_final:
            return None
        return self.controller.back()

    def undo(self) -> Optional[WizardState]:
        if self.controller.is_final:
            return None
        state = self.history.undo()
        if state is None or not self._replay(state):
            return None
        return self.state

    def redo(self) -> Optional[WizardState]:
        if self.controller.is_final:
            return None
        state = self.history.redo()
        if state is None or not self._replay(state):
            return None
        return self.state
