from __future__ import annotations
from typing import List
from wizardflow.core.config import settings
from wizardflow.schemas.wizard import WizardState


class HistoryStack:
    """Bounded undo/redo log of wizard-state snapshots.

    ``cursor`` points at the entry matching the live state. Pushing drops the
    redo tail; once over capacity the oldest entry is evicted.
    """

    def __init__(self, capacity: int | None = None):
        self.capacity = capacity or settings.history_capacity
        self._entries: List[WizardState] = []
        self.cursor = -1

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def can_undo(self) -> bool:
        return self.cursor > 0

    @property
    def can_redo(self) -> bool:
        return self.cursor < len(self._entries) - 1

    def push(self, state: WizardState) -> None:
        del self._entries[self.cursor + 1:]
        self._entries.append(state.model_copy(deep=True))
        self.cursor = len(self._entries) - 1
        if len(self._entries) > self.capacity:
            self._entries.pop(0)
            self.cursor -= 1

    def undo(self) -> WizardState | None:
        if not self.can_undo:
            return None
        self.cursor -= 1
        return self._entries[self.cursor].model_copy(deep=True)

    def redo(self) -> WizardState | None:
        if not self.can_redo:
            return None
        self.cursor += 1
        return self._entries[self.cursor].model_copy(deep=True)

    def current(self) -> WizardState | None:
        if self.cursor < 0:
            return None
        return self._entries[self.cursor].model_copy(deep=True)

    def clear(self) -> None:
        self._entries.clear()
        self.cursor = -1
