"""Data model and invariant checks."""

import pytest

from lecture_worker.errors import InvalidQuestion, InvariantViolation
from lecture_worker.models import (
    AnswerOption, Job, JobError, PipelineStage, Question, Segment,
    segment_count_for, segment_id_for, validate_options, validate_question, validate_segments
)


def options(*correct_flags):
    return [
        AnswerOption(id=f"option_{n + 1}", text=f"Answer {n + 1}", is_correct=flag)
        for n, flag in enumerate(correct_flags)
    ]


def test_stage_order():
    assert PipelineStage.RECEIVED.next_stage() == PipelineStage.TRANSCODING
    assert PipelineStage.GENERATING_QUESTIONS.next_stage() == PipelineStage.COMPLETED
    with pytest.raises(InvariantViolation):
        PipelineStage.COMPLETED.next_stage()
    with pytest.raises(InvariantViolation):
        PipelineStage.FAILED.next_stage()


def test_terminal_stages():
    assert PipelineStage.COMPLETED.is_terminal
    assert PipelineStage.FAILED.is_terminal
    assert PipelineStage.CANCELLED.is_terminal
    assert not PipelineStage.GENERATING_QUESTIONS.is_terminal


def test_segment_count_covers_partial_window():
    assert segment_count_for(35 * 60, 300) == 7
    assert segment_count_for(301, 300) == 2
    assert segment_count_for(300, 300) == 1
    assert segment_count_for(0, 300) == 0


def test_segment_bounds_and_id():
    segment = Segment(id=segment_id_for("job", 2), job_id="job", index=2, text="x")
    assert segment.id == "job_segment_002"
    assert segment.start_sec == 600
    assert segment.end_sec == 900


def test_exactly_one_correct_option():
    assert len(validate_options(options(False, True, False, False))) == 4

    with pytest.raises(InvalidQuestion):
        validate_options(options(True, True, False, False))
    with pytest.raises(InvalidQuestion):
        validate_options(options(False, False, False, False))
    with pytest.raises(InvalidQuestion):
        validate_options([])


def test_option_ids_unique():
    duplicated = [
        AnswerOption(id="a", text="one", is_correct=True),
        AnswerOption(id="a", text="two"),
    ]
    with pytest.raises(InvalidQuestion):
        validate_options(duplicated)


def test_question_text_required():
    question = Question(id="q", segment_id="s", text="  ", options=tuple(options(True, False)))
    with pytest.raises(InvalidQuestion):
        validate_question(question)


def test_segments_must_be_contiguous():
    segments = [
        Segment(id=segment_id_for("job", i), job_id="job", index=i, text="")
        for i in (0, 2)
    ]
    with pytest.raises(InvariantViolation):
        validate_segments("job", segments)
    with pytest.raises(InvariantViolation):
        validate_segments("job", [])
    with pytest.raises(InvariantViolation):
        validate_segments("other", segments[:1])


def test_job_status_payload():
    job = Job(id="j", source_ref="abc", size_bytes=1, stage=PipelineStage.TRANSCODING, progress=40)
    assert job.status() == {'stage': 'Transcoding', 'progress': 40}

    failed = Job(
        id="j", source_ref="abc", size_bytes=1, stage=PipelineStage.FAILED, progress=40,
        error=JobError(stage=PipelineStage.TRANSCODING, message="boom")
    )
    assert failed.status()['error'] == {'stage': 'Transcoding', 'message': 'boom', 'retryable': False}
    assert failed.to_dict()['history'] == ['Received']
