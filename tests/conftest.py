"""Shared fixtures: scripted streams, a recording backend and an in-memory snapshot database."""
import asyncio
import json
from unittest.mock import AsyncMock
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from wizardflow.core.config import Settings
from wizardflow.core.workflow import CATEGORIES
from wizardflow.db.session import init_db


def frame(**payload) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n".encode("utf-8")


def category_frames(index: int, steps=(50, 100), **extra) -> list:
    """Progress frames for one category, ending at 100%."""
    key = CATEGORIES[index].key
    return [
        frame(stage=key, categoryIndex=index, categoryProgress=p, checkScores={f"{key}_check": p}, **extra)
        for p in steps
    ]


class FakeStream:
    """Scripted stand-in for ``StreamHandle``; optionally fails after its chunks."""

    def __init__(self, chunks=(), error: BaseException | None = None):
        self._chunks = list(chunks)
        self.error = error
        self.closed = False

    async def _iter(self):
        for chunk in self._chunks:
            if self.closed:
                return
            yield chunk
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error

    def chunks(self):
        return self._iter()

    async def aclose(self):
        self.closed = True


class FakeBackend:
    """Records requests and hands out queued streams (or raises queued errors)."""

    def __init__(self, investigation=(), generation=()):
        self.investigation_streams = list(investigation)
        self.generation_streams = list(generation)
        self.investigation_requests = []
        self.generation_requests = []
        self.refine = AsyncMock(return_value={"message": "ok"})
        self.download_package = AsyncMock(return_value=b"PK\x03\x04")

    @staticmethod
    def _next(queue):
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def open_investigation(self, request):
        self.investigation_requests.append(request)
        return self._next(self.investigation_streams)

    async def open_generation(self, request):
        self.generation_requests.append(request)
        return self._next(self.generation_streams)


async def wait_until(predicate, timeout: float = 2.0, step: float = 0.005) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(step)
    return True


@pytest.fixture
def fast_settings():
    return Settings(
        reconnect_base_delay_s=0.01,
        reconnect_max_delay_s=0.04,
        reconnect_max_attempts=3,
        auto_advance_delay_s=0.01,
        build_grace_delay_s=0.01,
        autosave_debounce_s=0.01,
        progress_debounce_s=0.01,
        generation_timeout_s=2,
        ingest_yield_every=2,
        history_capacity=50,
    )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def recorded_sleeps():
    """A sleep replacement that records delays and only yields to the loop."""
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)
        await asyncio.sleep(0)

    fake_sleep.delays = delays
    return fake_sleep
