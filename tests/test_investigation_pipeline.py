"""Tests for category job bookkeeping, resume and progress snapshots."""
from datetime import timedelta
import pytest
from wizardflow.core.controller import StageController
from wizardflow.core.errors import BackendError
from wizardflow.core.guard import AutoAdvanceGuard
from wizardflow.core.workflow import CATEGORIES, FIRST_CATEGORY_STAGE, CategoryStatus
from wizardflow.persistence.progress import PROGRESS_KEY, ProgressStore
from wizardflow.persistence.slot import SnapshotSlot
from wizardflow.pipelines.investigation import InvestigationPipeline
from wizardflow.schemas.events import StreamEvent
from wizardflow.schemas.jobs import CategoryJob, utcnow
from wizardflow.schemas.wizard import InvestigationRequest, WizardState
from conftest import FakeBackend, FakeStream, category_frames, frame


def make_pipeline(settings, session_factory, backend=None, clock=utcnow):
    controller = StageController(WizardState(stage=FIRST_CATEGORY_STAGE, selected_package="starter"))
    guard = AutoAdvanceGuard(controller)
    store = ProgressStore(SnapshotSlot(PROGRESS_KEY, session_factory), settings=settings, clock=clock)
    pipeline = InvestigationPipeline(controller, guard, backend or FakeBackend(), store, settings=settings)
    pipeline.topic = "Acme Corp"
    return pipeline, guard, store


def progress(index, value, **fields):
    return StreamEvent(stage=CATEGORIES[index].key, categoryIndex=index, categoryProgress=value, **fields)


def test_initial_jobs_follow_canonical_order(fast_settings, session_factory):
    pipeline, _, _ = make_pipeline(fast_settings, session_factory)

    assert [j.index for j in pipeline.jobs] == list(range(13))
    assert [j.key for j in pipeline.jobs] == [c.key for c in CATEGORIES]
    assert all(j.status == CategoryStatus.PENDING and j.progress == 0 for j in pipeline.jobs)


@pytest.mark.asyncio
async def test_progress_is_clamped(fast_settings, session_factory):
    pipeline, guard, _ = make_pipeline(fast_settings, session_factory)

    pipeline.apply_event(progress(1, -20))
    assert pipeline.jobs[1].progress == 0
    assert pipeline.jobs[1].status == CategoryStatus.IN_PROGRESS

    pipeline.apply_event(progress(0, 250))
    assert pipeline.jobs[0].progress == 100
    assert pipeline.jobs[0].status == CategoryStatus.COMPLETE
    guard.cancel()


def test_check_scores_merge_new_keys_over_old(fast_settings, session_factory):
    pipeline, _, _ = make_pipeline(fast_settings, session_factory)

    pipeline.apply_event(progress(2, 10, checkScores={"robots": 0.5, "sitemap": 0.7}))
    pipeline.apply_event(progress(2, 20, checkScores={"sitemap": 0.9, "canonical": 1.0}))

    assert pipeline.jobs[2].check_scores == {"robots": 0.5, "sitemap": 0.9, "canonical": 1.0}


def test_progress_never_decreases(fast_settings, session_factory):
    pipeline, _, _ = make_pipeline(fast_settings, session_factory)

    for value in (30, 60, 45, 10, 61):
        pipeline.apply_event(progress(3, value))
        assert pipeline.jobs[3].progress >= 30

    assert pipeline.jobs[3].progress == 61


def test_category_resolved_from_backend_key(fast_settings, session_factory):
    pipeline, _, _ = make_pipeline(fast_settings, session_factory)

    pipeline.apply_event(StreamEvent(stage="local_seo", categoryProgress=15))

    assert pipeline.jobs[8].progress == 15
    assert pipeline.jobs[8].status == CategoryStatus.IN_PROGRESS


def test_failed_job_is_frozen(fast_settings, session_factory):
    pipeline, _, _ = make_pipeline(fast_settings, session_factory)

    pipeline.apply_event(progress(4, 35))
    pipeline.apply_event(StreamEvent(stage="structure_navigation", categoryIndex=4, error="crawler blocked"))
    pipeline.apply_event(progress(4, 90))

    job = pipeline.jobs[4]
    assert job.status == CategoryStatus.FAILED
    assert job.progress == 35
    assert job.error == "crawler blocked"
    assert pipeline.phases[4].status == "failed"
    assert pipeline.phases[4].ended_at is not None


@pytest.mark.asyncio
async def test_duplicate_completion_is_ignored(fast_settings, session_factory):
    pipeline, guard, _ = make_pipeline(fast_settings, session_factory)

    pipeline.apply_event(progress(0, 100))
    pipeline.apply_event(progress(0, 100))
    pipeline.apply_event(progress(0, 80))

    assert pipeline.completions == [0]
    assert pipeline.jobs[0].progress == 100
    guard.cancel()


@pytest.mark.asyncio
async def test_moving_on_returns_earlier_active_job_to_pending(fast_settings, session_factory):
    pipeline, guard, _ = make_pipeline(fast_settings, session_factory)

    pipeline.apply_event(progress(0, 70))
    pipeline.apply_event(progress(1, 5))

    assert pipeline.jobs[0].status == CategoryStatus.PENDING
    assert pipeline.jobs[0].progress == 70
    assert pipeline.jobs[1].status == CategoryStatus.IN_PROGRESS
    assert pipeline.active_job is pipeline.jobs[1]
    assert pipeline.completions == []
    assert not guard.pending
    guard.cancel()


@pytest.mark.asyncio
async def test_interleaved_frames_keep_late_scores_of_earlier_category(fast_settings, session_factory):
    pipeline, guard, _ = make_pipeline(fast_settings, session_factory)

    pipeline.apply_event(progress(4, 50, checkScores={"a": 1.0}))
    pipeline.apply_event(progress(5, 5))
    pipeline.apply_event(progress(4, 100, checkScores={"final_check": 9}))

    assert pipeline.jobs[4].status == CategoryStatus.COMPLETE
    assert pipeline.jobs[4].check_scores == {"a": 1.0, "final_check": 9}
    assert pipeline.completions == [4]
    assert pipeline.jobs[5].status == CategoryStatus.PENDING
    assert pipeline.jobs[5].progress == 5
    assert pipeline.phases[4].status == "complete"
    guard.cancel()


def test_error_without_category_raises(fast_settings, session_factory):
    pipeline, _, _ = make_pipeline(fast_settings, session_factory)

    with pytest.raises(BackendError) as exc_info:
        pipeline.apply_event(StreamEvent(status="failed", error="Request timeout"))

    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_resume_from_category_only_resets_that_job(fast_settings, session_factory):
    first_run = []
    for i in range(13):
        if i == 5:
            first_run += category_frames(5, steps=(40,))
            first_run.append(frame(stage="mobile_optimization", categoryIndex=5, error="render service down"))
        else:
            first_run += category_frames(i)
    retry = category_frames(5, steps=(30, 100)) + [frame(stage="complete", data={"summary": "done"})]
    backend = FakeBackend(investigation=[FakeStream(first_run), FakeStream(retry)])
    pipeline, guard, _ = make_pipeline(fast_settings, session_factory, backend)

    assert await pipeline.run(InvestigationRequest(topic="Acme Corp")) is None
    assert pipeline.jobs[5].status == CategoryStatus.FAILED
    before = {j.index: j.model_dump() for j in pipeline.jobs if j.index != 5}

    results = await pipeline.resume_from_category(5)

    assert results == {"summary": "done"}
    assert backend.investigation_requests[-1].resume_from_category == 5
    assert backend.investigation_requests[-1].model_dump(by_alias=True)["resumeFromCategory"] == 5
    assert {j.index: j.model_dump() for j in pipeline.jobs if j.index != 5} == before
    assert pipeline.jobs[5].status == CategoryStatus.COMPLETE
    assert pipeline.jobs[5].check_scores == {"mobile_optimization_check": 100}
    assert pipeline.completions.count(5) == 1
    guard.cancel()


@pytest.mark.asyncio
async def test_summary_assembled_when_stream_ends_without_payload(fast_settings, session_factory):
    chunks = [f for i in range(13) for f in category_frames(i)]
    pipeline, guard, _ = make_pipeline(fast_settings, session_factory, FakeBackend(investigation=[FakeStream(chunks)]))

    results = await pipeline.run(InvestigationRequest(topic="Acme Corp"))

    assert results["topic"] == "Acme Corp"
    assert [c["status"] for c in results["categories"]] == ["complete"] * 13
    report = pipeline.phase_report()
    assert report[0]["name"] == "investigation"
    assert report[0]["status"] == "complete"
    assert len(report) == 14
    assert all(r["durationSeconds"] is not None for r in report)
    guard.cancel()


def test_progress_snapshot_restores_for_same_topic(fast_settings, session_factory):
    pipeline, _, store = make_pipeline(fast_settings, session_factory)
    pipeline.apply_event(progress(3, 45, checkScores={"lcp": 2.1}))
    store.save_now("Acme Corp", pipeline.jobs)

    restored, _, _ = make_pipeline(fast_settings, session_factory)
    assert restored.restore_progress("Acme Corp")

    assert restored.jobs[3].progress == 45
    assert restored.jobs[3].check_scores == {"lcp": 2.1}


def test_progress_snapshot_for_other_topic_is_discarded(fast_settings, session_factory):
    _, _, store = make_pipeline(fast_settings, session_factory)
    store.save_now("Acme Corp", [CategoryJob.initial(i) for i in range(13)])

    assert store.load("Globex") is None
    assert SnapshotSlot(PROGRESS_KEY, session_factory).read() is None


def test_stale_progress_snapshot_is_discarded(fast_settings, session_factory):
    saved_at = utcnow() - timedelta(hours=2)
    _, _, store = make_pipeline(fast_settings, session_factory, clock=lambda: saved_at)
    store.save_now("Acme Corp", [CategoryJob.initial(i) for i in range(13)])

    _, _, fresh_store = make_pipeline(fast_settings, session_factory)
    assert fresh_store.load("Acme Corp") is None


def test_structurally_invalid_snapshot_is_discarded(fast_settings, session_factory):
    slot = SnapshotSlot(PROGRESS_KEY, session_factory)
    jobs = [CategoryJob.initial(i).model_dump(mode="json") for i in range(13)]
    slot.write({"topic": "Acme Corp", "saved_at": utcnow().isoformat(), "jobs": jobs[:12]}, topic="Acme Corp")
    _, _, store = make_pipeline(fast_settings, session_factory)
    assert store.load("Acme Corp") is None

    jobs[0], jobs[1] = jobs[1], jobs[0]
    slot.write({"topic": "Acme Corp", "saved_at": utcnow().isoformat(), "jobs": jobs}, topic="Acme Corp")
    assert store.load("Acme Corp") is None
