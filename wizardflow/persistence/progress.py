from __future__ import annotations
import asyncio
import logging
from datetime import timezone
from typing import Callable, List, Optional
from pydantic import ValidationError
from wizardflow.core.config import Settings, settings as default_settings
from wizardflow.core.timers import Debouncer
from wizardflow.persistence.slot import SnapshotSlot
from wizardflow.schemas.jobs import CategoryJob, ProgressSnapshot, utcnow

log = logging.getLogger(__name__)

PROGRESS_KEY = "investigation-progress"


class ProgressStore:
    """Debounced snapshots of the 13 category jobs, keyed by topic."""

    def __init__(
        self,
        slot: SnapshotSlot | None = None,
        *,
        settings: Settings | None = None,
        sleep=asyncio.sleep,
        clock: Callable = utcnow,
        session_id: str = "-",
    ):
        cfg = settings or default_settings
        self._slot = slot or SnapshotSlot(PROGRESS_KEY)
        self._debouncer = Debouncer(cfg.progress_debounce_s, self._write, sleep=sleep)
        self._clock = clock
        self.max_age_s = cfg.progress_max_age_s
        self.session_id = session_id

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    def save(self, topic: str, jobs: List[CategoryJob]) -> None:
        self._debouncer.schedule(topic, [job.model_copy(deep=True) for job in jobs])

    def save_now(self, topic: str, jobs: List[CategoryJob]) -> None:
        self._debouncer.cancel()
        self._write(topic, jobs)

    def flush(self) -> None:
        self._debouncer.flush()

    def cancel(self) -> None:
        self._debouncer.cancel()

    def _write(self, topic: str, jobs: List[CategoryJob]) -> None:
        snapshot = ProgressSnapshot(topic=topic, saved_at=self._clock(), jobs=jobs)
        self._slot.write(snapshot.model_dump(mode="json"), topic=topic)

    def load(self, topic: str) -> Optional[List[CategoryJob]]:
        """Return saved jobs for ``topic`` if the snapshot is fresh and well-formed."""
        raw = self._slot.read()
        if raw is None:
            return None

        try:
            snapshot = ProgressSnapshot.model_validate(raw)
        except ValidationError as e:
            return self._discard(f"invalid snapshot: {e}")

        if snapshot.topic != topic:
            return self._discard(f"topic mismatch ({snapshot.topic!r} != {topic!r})")

        saved_at = snapshot.saved_at
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=timezone.utc)
        age = (self._clock() - saved_at).total_seconds()
        if age < 0 or age >= self.max_age_s:
            return self._discard(f"stale snapshot ({age:.0f}s old)")

        log.info("Restored investigation progress for %r", topic,
                 extra={"session_id": self.session_id, "stage": "investigation"})
        return snapshot.jobs

    def _discard(self, reason: str) -> None:
        log.info("Discarding investigation progress: %s", reason,
                 extra={"session_id": self.session_id, "stage": "investigation"})
        self._slot.delete()
        return None

    def clear(self) -> None:
        self._debouncer.cancel()
        self._slot.delete()
