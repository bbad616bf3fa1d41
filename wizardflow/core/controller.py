from __future__ import annotations
import logging
from typing import Callable, List
from wizardflow.core.workflow import WizardStage, previous_stage
from wizardflow.schemas.wizard import WizardState

log = logging.getLogger(__name__)

StateListener = Callable[[WizardState, WizardState], None]

# The only stages reachable from final.
FINAL_EXITS = frozenset({WizardStage.FINAL, WizardStage.COMPLETED})


class StageController:
    """Sole owner of the wizard state.

    Every mutation goes through ``update()``, which hands the callback the
    state as it is at apply time, so timers and stream callbacks never act on
    a value captured when they were scheduled. Listeners run after each
    committed change with ``(old, new)``. Once on the final stage the only
    way out is to completed.
    """

    def __init__(self, state: WizardState | None = None, session_id: str = "-"):
        self._state = state or WizardState()
        self._listeners: List[StateListener] = []
        self.session_id = session_id

    @property
    def state(self) -> WizardState:
        return self._state

    @property
    def stage(self) -> WizardStage:
        return self._state.stage

    @property
    def is_final(self) -> bool:
        return self._state.stage == WizardStage.FINAL

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, fn: Callable[[WizardState], WizardState]) -> WizardState:
        old = self._state
        new = fn(old)
        if new is old:
            return old
        if old.stage == WizardStage.FINAL and new.stage not in FINAL_EXITS:
            log.warning("Refusing to leave final stage for %s", new.stage,
                        extra={"session_id": self.session_id, "stage": str(old.stage)})
            return old
        self._state = new
        for listener in list(self._listeners):
            listener(old, new)
        return new

    def patch(self, **changes) -> WizardState:
        return self.update(lambda s: s.model_copy(update=changes))

    def transition(self, next_stage: WizardStage) -> WizardStage:
        next_stage = WizardStage(next_stage)

        def apply(s: WizardState) -> WizardState:
            if s.stage == next_stage:
                return s
            return s.model_copy(update={
                "stage_history": [*s.stage_history, s.stage],
                "stage": next_stage,
            })

        new = self.update(apply)
        if new.stage != next_stage:
            return new.stage
        log.info("Stage transition", extra={"session_id": self.session_id, "stage": str(new.stage)})
        return new.stage

    def back(self) -> WizardStage | None:
        """Return to the previous stage.

        Uses the recorded history when there is one; otherwise falls back to
        the previous stage in canonical order.
        """
        def apply(s: WizardState) -> WizardState:
            if s.stage_history:
                return s.model_copy(update={
                    "stage": s.stage_history[-1],
                    "stage_history": s.stage_history[:-1],
                })
            fallback = previous_stage(s.stage)
            if fallback is None:
                return s
            return s.model_copy(update={"stage": fallback})

        old_stage = self.stage
        new = self.update(apply)
        if new.stage == old_stage:
            return None
        log.info("Navigated back", extra={"session_id": self.session_id, "stage": str(new.stage)})
        return new.stage

    def replace(self, state: WizardState) -> bool:
        """Swap in a whole state (restore, undo/redo). Refused on the final stage."""
        if self.is_final:
            log.warning("Refusing to replace final state", extra={"session_id": self.session_id, "stage": str(self.stage)})
            return False
        self.update(lambda s: state)
        return True

    def reset(self) -> bool:
        if self.is_final:
            log.warning("Refusing to reset final state", extra={"session_id": self.session_id, "stage": str(self.stage)})
            return False
        self.update(lambda s: WizardState())
        log.info("Wizard reset", extra={"session_id": self.session_id, "stage": str(self.stage)})
        return True
