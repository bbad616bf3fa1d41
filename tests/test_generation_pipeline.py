"""Tests for build-block progress, payload decoding and the generation timeout."""
import asyncio
import base64
import pytest
from wizardflow.core.errors import BackendError, GenerationTimeoutError
from wizardflow.core.workflow import BlockStatus
from wizardflow.pipelines.artifact import decode_content, normalize_artifact
from wizardflow.pipelines.generation import GenerationPipeline
from wizardflow.schemas.wizard import GenerationRequest
from conftest import FakeBackend, FakeStream, frame

PAGE = "<!DOCTYPE html><html><body><main><h1>Acme Corp</h1><p>" + "Quality widgets since 1952. " * 5 + "</p></main></body></html>"
STYLES = "body { margin: 0; font-family: sans-serif; }"
SCRIPT = "document.addEventListener('DOMContentLoaded', () => console.log('ready'));"


def b64(text):
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def statuses(pipeline):
    return [b.status for b in pipeline.blocks]


def test_blocks_follow_progress():
    pipeline = GenerationPipeline(FakeBackend())

    pipeline.apply_progress(0)
    assert statuses(pipeline) == [BlockStatus.BUILDING] + [BlockStatus.PENDING] * 5

    pipeline.apply_progress(50)
    assert statuses(pipeline) == [BlockStatus.COMPLETE] * 3 + [BlockStatus.BUILDING] + [BlockStatus.PENDING] * 2

    pipeline.apply_progress(20)
    assert pipeline.progress == 50

    pipeline.apply_progress(100)
    assert statuses(pipeline) == [BlockStatus.COMPLETE] * 6


def test_decode_is_idempotent_on_plain_text():
    assert decode_content(PAGE, "markup", encoded=True) == PAGE
    assert decode_content(STYLES, "styles", encoded=True) == STYLES
    assert decode_content(decode_content(b64(PAGE), "markup", encoded=True), "markup", encoded=True) == PAGE


def test_decode_respects_flag_and_sniffs_without_it():
    assert decode_content(b64(PAGE), "markup", encoded=False) == b64(PAGE)
    assert decode_content(b64(PAGE), "markup", encoded=None) == PAGE
    assert decode_content("not base64 at all!", "markup", encoded=True) == "not base64 at all!"


def test_legacy_payload_normalizes_to_single_page():
    artifact = normalize_artifact(
        {"html": b64(PAGE), "css": b64(STYLES), "js": SCRIPT, "meta": {"title": "Acme Corp"}},
        encoded=True,
    )

    assert artifact.files == {"pages/home.html": PAGE}
    assert artifact.shared_assets.styles == STYLES
    assert artifact.shared_assets.script == SCRIPT
    assert artifact.manifest["siteName"] == "Acme Corp"
    assert artifact.manifest["pages"][0]["slug"] == "home"
    assert artifact.primary_path == "pages/home.html"


def test_multi_file_payload_normalizes():
    artifact = normalize_artifact({
        "manifest": {"siteName": "Acme Corp"},
        "files": {"index.html": {"content": b64(PAGE)}, "about.html": b64(PAGE)},
        "assets": {"css": b64(STYLES), "js": SCRIPT},
        "encoded": True,
    })

    assert artifact.files["index.html"] == PAGE
    assert artifact.files["about.html"] == PAGE
    assert artifact.shared_assets.styles == STYLES
    assert artifact.primary_path == "index.html"


def test_unknown_payload_shape_is_rejected():
    with pytest.raises(BackendError) as exc_info:
        normalize_artifact({"pages": []})
    assert not exc_info.value.retryable


@pytest.mark.asyncio
async def test_run_returns_artifact(fast_settings, recorded_sleeps):
    stream = FakeStream([
        frame(progress=10),
        frame(progress=60),
        frame(stage="complete", encoded=True, data={"html": b64(PAGE), "css": "", "js": ""}),
    ])
    backend = FakeBackend(generation=[stream])
    pipeline = GenerationPipeline(backend, settings=fast_settings, sleep=recorded_sleeps)
    request = GenerationRequest(requirements={"topic": "Acme Corp"}, selected_design_templates=[{"id": "modern"}])

    artifact = await pipeline.run(request)

    assert artifact.files["pages/home.html"] == PAGE
    assert statuses(pipeline) == [BlockStatus.COMPLETE] * 6
    assert pipeline.phase.status == "complete"
    assert backend.generation_requests[0].model_dump(by_alias=True)["selectedDesignTemplates"] == [{"id": "modern"}]
    assert stream.closed


@pytest.mark.asyncio
async def test_error_event_raises_backend_error(fast_settings, recorded_sleeps):
    backend = FakeBackend(generation=[FakeStream([frame(progress=20), frame(status="failed", error="Missing required field: requirements")])])
    pipeline = GenerationPipeline(backend, settings=fast_settings, sleep=recorded_sleeps)

    with pytest.raises(BackendError) as exc_info:
        await pipeline.run(GenerationRequest())

    assert not exc_info.value.retryable
    assert pipeline.phase.status == "failed"


class HangingStream(FakeStream):
    async def _iter(self):
        yield frame(progress=5)
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_timeout_aborts_stream(fast_settings):
    stream = HangingStream()
    settings = fast_settings.model_copy(update={"generation_timeout_s": 0.05})
    pipeline = GenerationPipeline(FakeBackend(generation=[stream]), settings=settings)

    with pytest.raises(GenerationTimeoutError) as exc_info:
        await pipeline.run(GenerationRequest())

    assert isinstance(exc_info.value, TimeoutError)
    assert stream.closed
    assert pipeline.phase.status == "timeout"
    assert pipeline.artifact is None
