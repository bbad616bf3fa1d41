"""Newline-delimited event-frame decoding for backend streams."""
from __future__ import annotations
import asyncio
import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator, Callable, List, Optional
from pydantic import ValidationError
from wizardflow.core.config import Settings, settings as default_settings
from wizardflow.core.errors import StreamParseError
from wizardflow.schemas.events import StreamEvent

log = logging.getLogger(__name__)

ParseErrorHandler = Callable[[StreamParseError], None]


class StreamIngestor:
    """Turns raw byte chunks into ``StreamEvent`` objects.

    Chunks may split lines (and multi-byte characters) anywhere; the
    incomplete tail is carried over to the next chunk. Only lines that start
    with the frame prefix are parsed. A bad frame is reported through
    ``on_parse_error`` and skipped; it never ends the stream.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        on_parse_error: Optional[ParseErrorHandler] = None,
        session_id: str = "-",
        sleep=asyncio.sleep,
    ):
        cfg = settings or default_settings
        self._sleep = sleep
        self.prefix = cfg.frame_prefix
        self.yield_every = max(1, cfg.ingest_yield_every)
        self._on_parse_error = on_parse_error
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.lines_processed = 0
        self.parse_errors = 0
        self.session_id = session_id

    def feed(self, chunk: bytes) -> List[str]:
        """Add a chunk and return the lines it completed."""
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return [line.rstrip("\r") for line in lines]

    def finish(self) -> List[str]:
        """Flush the decoder and return the final unterminated line, if any."""
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer.rstrip("\r"), ""
        return [tail] if tail else []

    def parse_line(self, line: str) -> Optional[StreamEvent]:
        if not line.startswith(self.prefix):
            return None
        body = line[len(self.prefix):].strip()
        if not body:
            return None
        try:
            return StreamEvent.model_validate(json.loads(body))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            self._report(StreamParseError(f"Failed to parse stream frame: {e}", line=line))
            return None

    def _report(self, error: StreamParseError) -> None:
        self.parse_errors += 1
        log.warning("%s", error, extra={"session_id": self.session_id, "stage": "-"})
        if self._on_parse_error is not None:
            self._on_parse_error(error)

    async def events(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
        async for chunk in chunks:
            for line in self.feed(chunk):
                event = await self._process(line)
                if event is not None:
                    yield event
        for line in self.finish():
            event = await self._process(line)
            if event is not None:
                yield event

    async def _process(self, line: str) -> Optional[StreamEvent]:
        self.lines_processed += 1
        if self.lines_processed % self.yield_every == 0:
            await self._sleep(0)
        return self.parse_line(line)
