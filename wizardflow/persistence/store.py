from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, Optional
from pydantic import ValidationError
from wizardflow.core.config import Settings, settings as default_settings
from wizardflow.core.errors import SnapshotValidationError
from wizardflow.core.timers import Debouncer
from wizardflow.core.workflow import (
    COMPLETED_STAGES,
    INITIAL_STAGE,
    PRE_PACKAGE_STAGES,
    WizardStage,
)
from wizardflow.persistence.slot import SnapshotSlot
from wizardflow.schemas.jobs import utcnow
from wizardflow.schemas.wizard import PersistedSnapshot, WizardState

log = logging.getLogger(__name__)

WIZARD_STATE_KEY = "wizard-state"


def should_suppress(state: WizardState) -> bool:
    """True when persisting ``state`` would corrupt resumability.

    Saving the initial stage while a package is already selected would read
    back as "not started".
    """
    return state.stage == INITIAL_STAGE and bool(state.selected_package)


def evaluate_snapshot(raw: Any) -> Optional[PersistedSnapshot]:
    """Apply the restore priority rules; None means discard."""
    if not isinstance(raw, dict):
        return None

    # 1. a final result is always restored, whatever else the snapshot holds
    if raw.get("stage") == WizardStage.FINAL.value:
        try:
            return PersistedSnapshot.model_validate(raw)
        except ValidationError as e:
            log.warning("Final snapshot failed validation, restoring anyway: %s", e,
                        extra={"session_id": "-", "stage": "final"})
            fields = {k: v for k, v in raw.items() if k in PersistedSnapshot.model_fields}
            fields["stage"] = WizardStage.FINAL
            return PersistedSnapshot.model_construct(**fields)

    try:
        snapshot = PersistedSnapshot.model_validate(raw)
    except ValidationError as e:
        error = SnapshotValidationError(f"Snapshot failed validation: {e}")
        log.warning("%s", error, extra={"session_id": "-", "stage": str(raw.get("stage", "-"))})
        return None

    # 2. fresh start
    if snapshot.stage == INITIAL_STAGE and not snapshot.selected_package:
        return None
    # 3. nothing chosen yet, but the stage claims otherwise
    if not snapshot.selected_package and snapshot.stage not in PRE_PACKAGE_STAGES:
        return None
    # 4. finished project
    if snapshot.stage in COMPLETED_STAGES:
        return None
    return snapshot


class PersistenceStore:
    """Debounced wizard-state snapshots with priority-ordered restore."""

    def __init__(
        self,
        slot: SnapshotSlot | None = None,
        *,
        settings: Settings | None = None,
        sleep=asyncio.sleep,
        session_id: str = "-",
    ):
        cfg = settings or default_settings
        self._slot = slot or SnapshotSlot(WIZARD_STATE_KEY)
        self._debouncer = Debouncer(cfg.autosave_debounce_s, self._write, sleep=sleep)
        self.session_id = session_id

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    def save(self, state: WizardState) -> bool:
        """Schedule a write of ``state``; a later save replaces it."""
        self._debouncer.schedule(state)
        return not should_suppress(state)

    def save_now(self, state: WizardState) -> bool:
        self._debouncer.cancel()
        return self._write(state)

    def flush(self) -> None:
        self._debouncer.flush()

    def cancel(self) -> None:
        self._debouncer.cancel()

    def _write(self, state: WizardState) -> bool:
        if should_suppress(state):
            log.warning("Blocked save of %s with a selected package", state.stage,
                        extra={"session_id": self.session_id, "stage": str(state.stage)})
            return False
        payload: Dict[str, Any] = state.model_dump(mode="json")
        payload["saved_at"] = utcnow().isoformat()
        self._slot.write(payload, stage=str(state.stage))
        log.debug("State saved", extra={"session_id": self.session_id, "stage": str(state.stage)})
        return True

    def restore(self) -> Optional[PersistedSnapshot]:
        raw = self._slot.read()
        if raw is None:
            return None
        snapshot = evaluate_snapshot(raw)
        if snapshot is None:
            log.info("Discarding saved state (stage=%s)", raw.get("stage"),
                     extra={"session_id": self.session_id, "stage": "-"})
            self._slot.delete()
            return None
        log.info("Restoring saved state", extra={"session_id": self.session_id, "stage": str(snapshot.stage)})
        return snapshot

    def clear(self) -> None:
        self._debouncer.cancel()
        self._slot.delete()
