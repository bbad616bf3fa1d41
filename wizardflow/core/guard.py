from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional
from wizardflow.core.controller import StageController
from wizardflow.core.workflow import WizardStage
from wizardflow.schemas.wizard import WizardState

log = logging.getLogger(__name__)


@dataclass
class PendingAdvance:
    expected_stage: WizardStage
    target_stage: WizardStage
    delay: float
    reason: str = ""
    precondition: Optional[Callable[[], bool]] = field(default=None, repr=False)
    on_commit: Optional[Callable[[WizardStage], None]] = field(default=None, repr=False)


class AutoAdvanceGuard:
    """Single-flight, cancellable transition between completed phases.

    At most one advance is pending at a time. When it fires, the stage is
    read from the controller at that moment; the transition only happens if
    the user is still on ``expected_stage``. Any stage change while waiting
    cancels it.
    """

    def __init__(self, controller: StageController, *, sleep=asyncio.sleep):
        self._controller = controller
        self._sleep = sleep
        self.in_flight = False
        self._pending: Optional[PendingAdvance] = None
        self._task: Optional[asyncio.Task] = None
        controller.subscribe(self._on_state_change)

    @property
    def pending(self) -> Optional[PendingAdvance]:
        return self._pending

    def schedule(
        self,
        *,
        expected_stage: WizardStage,
        target_stage: WizardStage,
        delay: float,
        reason: str = "",
        precondition: Optional[Callable[[], bool]] = None,
        on_commit: Optional[Callable[[WizardStage], None]] = None,
    ) -> bool:
        if self.in_flight:
            log.debug("Auto-advance already pending, skipping %s", target_stage,
                      extra={"session_id": self._controller.session_id, "stage": str(self._controller.stage)})
            return False
        if self._controller.is_final:
            return False

        pending = PendingAdvance(
            expected_stage=expected_stage,
            target_stage=target_stage,
            delay=delay,
            reason=reason,
            precondition=precondition,
            on_commit=on_commit,
        )
        self.in_flight = True
        self._pending = pending
        self._task = asyncio.get_running_loop().create_task(self._wait_and_fire(pending))
        log.info("Auto-advance to %s scheduled in %.2fs", target_stage, delay,
                 extra={"session_id": self._controller.session_id, "stage": str(expected_stage)})
        return True

    async def _wait_and_fire(self, pending: PendingAdvance) -> None:
        await self._sleep(pending.delay)
        self._task = None
        self._commit(pending)

    def confirm(self) -> bool:
        """User accepted the pending advance: commit it now."""
        pending = self._pending
        if pending is None:
            return False
        self._cancel_task()
        return self._commit(pending)

    def cancel(self) -> None:
        """User declined, or teardown."""
        if self._pending is not None:
            log.info("Auto-advance to %s cancelled", self._pending.target_stage,
                     extra={"session_id": self._controller.session_id, "stage": str(self._controller.stage)})
        self._cancel_task()
        self._release()

    def _commit(self, pending: PendingAdvance) -> bool:
        if self._pending is not pending:
            return False
        self._release()

        current = self._controller.stage
        if current != pending.expected_stage:
            log.info("Auto-advance dropped, stage moved to %s", current,
                     extra={"session_id": self._controller.session_id, "stage": str(current)})
            return False
        if pending.precondition is not None and not pending.precondition():
            log.info("Auto-advance dropped, precondition no longer holds",
                     extra={"session_id": self._controller.session_id, "stage": str(current)})
            return False

        self._controller.transition(pending.target_stage)
        if pending.on_commit is not None:
            pending.on_commit(pending.target_stage)
        return True

    def _release(self) -> None:
        self._pending = None
        self.in_flight = False

    def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    def _on_state_change(self, old: WizardState, new: WizardState) -> None:
        pending = self._pending
        if pending is not None and new.stage != pending.expected_stage:
            self.cancel()
