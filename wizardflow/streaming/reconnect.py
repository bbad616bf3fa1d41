from __future__ import annotations
import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional
import httpx
from wizardflow.core.config import Settings, settings as default_settings
from wizardflow.core.errors import StreamConnectionError
from wizardflow.schemas.events import StreamEvent
from wizardflow.streaming.client import StreamHandle
from wizardflow.streaming.ingestor import ParseErrorHandler, StreamIngestor

log = logging.getLogger(__name__)

# Failures worth re-issuing the request for.
READ_FAILURES = (httpx.TransportError, ConnectionError)


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class _PrematureEnd(ConnectionError):
    pass


class ReconnectionManager:
    """Keeps an event stream alive across drops.

    ``open_stream`` is called for the first connection and again for every
    retry, so it must build its request from the owner's latest progress
    (e.g. the resume-from-category index). Retries wait
    ``min(base * 2**attempt, cap)``; after ``max_attempts`` consecutive
    failures the manager goes ``disconnected`` and raises
    ``StreamConnectionError``.
    """

    def __init__(
        self,
        open_stream: Callable[[], Awaitable[StreamHandle]],
        *,
        settings: Settings | None = None,
        sleep=asyncio.sleep,
        on_state_change: Optional[Callable[[ConnectionState, int], None]] = None,
        on_parse_error: Optional[ParseErrorHandler] = None,
        session_id: str = "-",
        label: str = "stream",
    ):
        self._settings = settings or default_settings
        self._open_stream = open_stream
        self._sleep = sleep
        self._on_state_change = on_state_change
        self._on_parse_error = on_parse_error
        self.session_id = session_id
        self.label = label

        self.base_delay = self._settings.reconnect_base_delay_s
        self.max_delay = self._settings.reconnect_max_delay_s
        self.max_attempts = self._settings.reconnect_max_attempts

        self.state = ConnectionState.IDLE
        self.attempt = 0
        self.delays: List[float] = []
        self.handle: Optional[StreamHandle] = None
        self.aborted = False

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def _set_state(self, state: ConnectionState) -> None:
        self.state = state
        if self._on_state_change is not None:
            self._on_state_change(state, self.attempt)

    async def events(
        self,
        is_finished: Callable[[], bool] = lambda: False,
        accept_end: Optional[Callable[[], bool]] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield events until the owner is done.

        ``is_finished`` is checked after every event; ``accept_end`` (default
        ``is_finished``) decides whether a clean end of stream is a normal
        finish or a dropped connection.
        """
        accept_end = accept_end or is_finished
        self.aborted = False
        while True:
            try:
                self.handle = await self._open_stream()
                self._set_state(ConnectionState.CONNECTED)
                ingestor = StreamIngestor(
                    settings=self._settings,
                    on_parse_error=self._on_parse_error,
                    session_id=self.session_id,
                )
                async for event in ingestor.events(self.handle.chunks()):
                    self.attempt = 0
                    yield event
                    if self.aborted or is_finished():
                        return
                if self.aborted or accept_end():
                    return
                raise _PrematureEnd(f"{self.label} closed before completion")
            except Exception as e:
                await self._close_handle()
                if self.aborted:
                    log.info("%s aborted", self.label, extra={"session_id": self.session_id, "stage": "-"})
                    return
                if not isinstance(e, READ_FAILURES):
                    raise
                if self.attempt >= self.max_attempts:
                    self._set_state(ConnectionState.DISCONNECTED)
                    log.error("%s disconnected after %d attempts: %s", self.label, self.attempt, e,
                              extra={"session_id": self.session_id, "stage": "-"})
                    raise StreamConnectionError(
                        f"{self.label} lost after {self.attempt} reconnection attempts: {e}",
                        attempts=self.attempt,
                    ) from e
                delay = self.delay_for(self.attempt)
                self._set_state(ConnectionState.RECONNECTING)
                log.warning("%s failed, reconnecting in %.2fs (attempt %d/%d): %s",
                            self.label, delay, self.attempt + 1, self.max_attempts, e,
                            extra={"session_id": self.session_id, "stage": "-"})
                self.delays.append(delay)
                await self._sleep(delay)
                self.attempt += 1
                if self.aborted:
                    return
            finally:
                await self._close_handle()

    async def abort(self) -> None:
        self.aborted = True
        await self._close_handle()

    async def _close_handle(self) -> None:
        handle, self.handle = self.handle, None
        if handle is not None:
            await handle.aclose()
