"""Job registry state machine tests."""

import pytest

from lecture_worker.errors import InvariantViolation, NotFound
from lecture_worker.models import PipelineStage
from lecture_worker.registry import JobRegistry


@pytest.fixture
def registry():
    return JobRegistry()


def test_create_job_starts_received(registry):
    job_id = registry.create_job("uploads/abc.mp4", 1_000_000, original_name="lecture.mp4")
    job = registry.get_job(job_id)

    assert job.stage == PipelineStage.RECEIVED
    assert job.progress == 0
    assert job.original_name == "lecture.mp4"
    assert registry.get_status(job_id) == {'stage': 'Received', 'progress': 0}


def test_create_job_rejects_bad_input(registry):
    with pytest.raises(ValueError):
        registry.create_job("", 10)
    with pytest.raises(ValueError):
        registry.create_job("uploads/abc.mp4", -1)


def test_unknown_job_raises_not_found(registry):
    with pytest.raises(NotFound):
        registry.get_status("missing")
    with pytest.raises(NotFound):
        registry.update_progress("missing", 10)


def test_stages_must_advance_in_order(registry):
    job_id = registry.create_job("abc", 1)
    registry.enter_stage(job_id, PipelineStage.TRANSCODING)

    with pytest.raises(InvariantViolation):
        registry.enter_stage(job_id, PipelineStage.SEGMENTING)
    with pytest.raises(InvariantViolation):
        registry.complete(job_id)

    registry.enter_stage(job_id, PipelineStage.TRANSCRIBING)
    assert registry.get_job(job_id).history == (
        PipelineStage.RECEIVED, PipelineStage.TRANSCODING, PipelineStage.TRANSCRIBING
    )


def test_progress_is_monotonic_and_clamped(registry):
    job_id = registry.create_job("abc", 1)
    registry.enter_stage(job_id, PipelineStage.TRANSCODING)

    assert registry.update_progress(job_id, 40) is True
    assert registry.update_progress(job_id, 30) is False
    assert registry.get_job(job_id).progress == 40
    assert registry.update_progress(job_id, 250) is True
    assert registry.get_job(job_id).progress == 100


def test_progress_resets_on_stage_entry(registry):
    job_id = registry.create_job("abc", 1)
    registry.enter_stage(job_id, PipelineStage.TRANSCODING)
    registry.update_progress(job_id, 100)
    registry.enter_stage(job_id, PipelineStage.TRANSCRIBING)

    assert registry.get_status(job_id) == {'stage': 'Transcribing', 'progress': 0}


def test_stale_stage_progress_is_dropped(registry):
    job_id = registry.create_job("abc", 1)
    registry.enter_stage(job_id, PipelineStage.TRANSCODING)
    registry.enter_stage(job_id, PipelineStage.TRANSCRIBING)

    assert registry.update_progress(job_id, 80, PipelineStage.TRANSCODING) is False
    assert registry.get_job(job_id).progress == 0


def test_fail_records_stage_and_is_terminal(registry):
    job_id = registry.create_job("abc", 1)
    registry.enter_stage(job_id, PipelineStage.TRANSCODING)
    registry.update_progress(job_id, 30)
    registry.fail(job_id, "unsupported codec")

    status = registry.get_status(job_id)
    assert status['stage'] == 'Failed'
    assert status['progress'] == 30
    assert status['error'] == {'stage': 'Transcoding', 'message': 'unsupported codec', 'retryable': False}

    assert registry.update_progress(job_id, 90) is False
    with pytest.raises(InvariantViolation):
        registry.enter_stage(job_id, PipelineStage.TRANSCRIBING)
    with pytest.raises(InvariantViolation):
        registry.mark_cancelled(job_id)


def test_complete_sets_full_progress(registry):
    job_id = registry.create_job("abc", 1)
    for stage in (PipelineStage.TRANSCODING, PipelineStage.TRANSCRIBING,
                  PipelineStage.SEGMENTING, PipelineStage.GENERATING_QUESTIONS):
        registry.enter_stage(job_id, stage)
    registry.complete(job_id)

    assert registry.get_status(job_id) == {'stage': 'Completed', 'progress': 100}
    assert registry.request_cancel(job_id) is False


def test_cancel_request_flag(registry):
    job_id = registry.create_job("abc", 1)
    registry.enter_stage(job_id, PipelineStage.TRANSCODING)

    assert registry.is_cancel_requested(job_id) is False
    assert registry.request_cancel(job_id) is True
    assert registry.is_cancel_requested(job_id) is True

    registry.mark_cancelled(job_id)
    assert registry.get_job(job_id).stage == PipelineStage.CANCELLED
    assert registry.is_cancel_requested(job_id) is False


def test_record_attempt_resets_per_stage(registry):
    job_id = registry.create_job("abc", 1)
    registry.enter_stage(job_id, PipelineStage.TRANSCODING)
    registry.record_attempt(job_id)
    assert registry.record_attempt(job_id) == 2

    registry.enter_stage(job_id, PipelineStage.TRANSCRIBING)
    assert registry.get_job(job_id).attempts == 0


def test_list_jobs_oldest_first(registry):
    first = registry.create_job("a", 1)
    second = registry.create_job("b", 1)

    assert [job.id for job in registry.list_jobs()] == [first, second]


def test_snapshots_are_immutable(registry):
    job_id = registry.create_job("abc", 1)
    before = registry.get_job(job_id)
    registry.enter_stage(job_id, PipelineStage.TRANSCODING)

    assert before.stage == PipelineStage.RECEIVED
    assert registry.get_job(job_id).stage == PipelineStage.TRANSCODING
