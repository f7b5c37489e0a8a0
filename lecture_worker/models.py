"""
Domain models for the lecture worker.

Defines the job state machine stages, the segment/question data model and
the stage executor result types shared by the pipeline and the store.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple

from .errors import InvalidQuestion, InvariantViolation


class PipelineStage(str, Enum):
    """Pipeline stages, in the order a job passes through them"""

    RECEIVED = "Received"
    TRANSCODING = "Transcoding"
    TRANSCRIBING = "Transcribing"
    SEGMENTING = "Segmenting"
    GENERATING_QUESTIONS = "GeneratingQuestions"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STAGES

    def next_stage(self) -> "PipelineStage":
        """Stage entered when this one succeeds"""
        try:
            idx = STAGE_ORDER.index(self)
        except ValueError:
            raise InvariantViolation(f"Stage {self.value} has no successor")
        if idx + 1 >= len(STAGE_ORDER):
            raise InvariantViolation(f"Stage {self.value} has no successor")
        return STAGE_ORDER[idx + 1]


STAGE_ORDER: Tuple[PipelineStage, ...] = (
    PipelineStage.RECEIVED,
    PipelineStage.TRANSCODING,
    PipelineStage.TRANSCRIBING,
    PipelineStage.SEGMENTING,
    PipelineStage.GENERATING_QUESTIONS,
    PipelineStage.COMPLETED,
)

TERMINAL_STAGES = frozenset({
    PipelineStage.COMPLETED,
    PipelineStage.FAILED,
    PipelineStage.CANCELLED,
})


@dataclass(frozen=True)
class JobError:
    """Failure record attached to a failed job"""
    stage: PipelineStage
    message: str
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stage': self.stage.value,
            'message': self.message,
            'retryable': self.retryable
        }


@dataclass(frozen=True)
class Job:
    """
    Immutable snapshot of one video's progress through the pipeline.

    The registry replaces the snapshot on every commit, so a reader holding
    a Job never sees a partially applied update.
    """
    id: str
    source_ref: str
    size_bytes: int
    stage: PipelineStage = PipelineStage.RECEIVED
    progress: int = 0
    error: Optional[JobError] = None
    original_name: Optional[str] = None
    duration_sec: Optional[float] = None
    attempts: int = 0
    history: Tuple[PipelineStage, ...] = (PipelineStage.RECEIVED,)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def status(self) -> Dict[str, Any]:
        """Status payload returned to polling clients"""
        payload = {
            'stage': self.stage.value,
            'progress': self.progress
        }
        if self.error is not None:
            payload['error'] = self.error.to_dict()
        return payload

    def to_dict(self) -> Dict[str, Any]:
        payload = self.status()
        payload.update({
            'id': self.id,
            'source_ref': self.source_ref,
            'size_bytes': self.size_bytes,
            'original_name': self.original_name,
            'duration_sec': self.duration_sec,
            'attempts': self.attempts,
            'history': [stage.value for stage in self.history],
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        })
        return payload


@dataclass(frozen=True)
class Segment:
    """A fixed-duration window of a job's transcript"""
    id: str
    job_id: str
    index: int
    text: str
    window_sec: float = 300.0

    @property
    def start_sec(self) -> float:
        return self.index * self.window_sec

    @property
    def end_sec(self) -> float:
        return (self.index + 1) * self.window_sec

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'job_id': self.job_id,
            'index': self.index,
            'start_sec': self.start_sec,
            'end_sec': self.end_sec,
            'text': self.text
        }


@dataclass(frozen=True)
class AnswerOption:
    """One answer option of a multiple-choice question"""
    id: str
    text: str
    is_correct: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'text': self.text, 'is_correct': self.is_correct}


@dataclass(frozen=True)
class Question:
    """A multiple-choice question belonging to one segment"""
    id: str
    segment_id: str
    text: str
    options: Tuple[AnswerOption, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'segment_id': self.segment_id,
            'text': self.text,
            'options': [option.to_dict() for option in self.options]
        }


def segment_id_for(job_id: str, index: int) -> str:
    """Deterministic segment id so re-running the Segment stage yields the same ids"""
    return f"{job_id}_segment_{index:03d}"


def segment_count_for(duration_sec: float, window_sec: float) -> int:
    """Number of windows needed to cover the full duration"""
    if duration_sec <= 0:
        return 0
    return int(math.ceil(duration_sec / window_sec))


def validate_options(options) -> Tuple[AnswerOption, ...]:
    """
    Check the single-correct-option invariant.

    Args:
        options: Sequence of AnswerOption

    Returns:
        The options as a tuple

    Raises:
        InvalidQuestion: if options are empty, ids repeat, or the number of
            correct options is not exactly one
    """
    options = tuple(options)
    if not options:
        raise InvalidQuestion("Question must have at least one option")

    ids = [option.id for option in options]
    if len(set(ids)) != len(ids):
        raise InvalidQuestion(f"Option ids must be unique within a question: {ids}")

    correct = sum(1 for option in options if option.is_correct)
    if correct != 1:
        raise InvalidQuestion(f"Question must have exactly one correct option, got {correct}")

    return options


def validate_question(question: Question) -> Question:
    """Validate a full question record"""
    if not question.text or not question.text.strip():
        raise InvalidQuestion(f"Question {question.id} has empty text")
    validate_options(question.options)
    return question


def validate_segments(job_id: str, segments: List[Segment]) -> None:
    """Segments must belong to the job and be indexed 0..N-1 in order"""
    if not segments:
        raise InvariantViolation(f"No segments to write for job {job_id}")

    for position, segment in enumerate(segments):
        if segment.job_id != job_id:
            raise InvariantViolation(
                f"Segment {segment.id} belongs to job {segment.job_id}, not {job_id}"
            )
        if segment.index != position:
            raise InvariantViolation(
                f"Segments for job {job_id} are not contiguous: expected index {position}, got {segment.index}"
            )


@dataclass(frozen=True)
class MediaRef:
    """Playable media produced by the Transcode stage"""
    video_path: str
    audio_path: str
    duration_sec: float


@dataclass(frozen=True)
class TranscriptSpan:
    """A timed piece of the transcript"""
    t_start: float
    t_end: float
    text: str


@dataclass(frozen=True)
class Transcript:
    """Full transcript produced by the Transcribe stage"""
    text: str
    duration_sec: float
    spans: Tuple[TranscriptSpan, ...] = ()


@dataclass(frozen=True)
class StageSuccess:
    """Executor completed; output is stage specific"""
    output: Any

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class StageFailure:
    """Executor failed"""
    kind: str
    message: str
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return False


@dataclass
class OrchestratorStats:
    """Counters reported by the orchestrator"""
    jobs_submitted: int = 0
    jobs_completed: int = 0
    jobs_failed: int = 0
    jobs_cancelled: int = 0
    stage_retries: int = 0
    total_processing_time: float = 0.0
    start_time: datetime = field(default_factory=datetime.now)
