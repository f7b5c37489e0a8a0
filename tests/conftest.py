import asyncio
from typing import Any, List, Optional

import pytest

from lecture_worker.adapters.memory_adapter import InMemoryTranscriptStore
from lecture_worker.config import WorkerConfig
from lecture_worker.errors import PermanentExecutorError
from lecture_worker.models import (
    AnswerOption, MediaRef, PipelineStage, Question, Segment, Transcript, TranscriptSpan
)
from lecture_worker.orchestrator import PipelineOrchestrator
from lecture_worker.pipeline.base import StageExecutor
from lecture_worker.pipeline.segment import WindowSegmentExecutor
from lecture_worker.registry import JobRegistry

LECTURE_DURATION_SEC = 35 * 60


def make_question(segment: Segment, n: int, correct: int = 0) -> Question:
    return Question(
        id=f"{segment.id}_question_{n:02d}",
        segment_id=segment.id,
        text=f"Question {n} about segment {segment.index}?",
        options=tuple(
            AnswerOption(id=f"option_{o + 1}", text=f"Answer {o + 1}", is_correct=(o == correct))
            for o in range(4)
        )
    )


def lecture_transcript(duration_sec: float = LECTURE_DURATION_SEC) -> Transcript:
    """One timed span per minute of lecture"""
    spans = tuple(
        TranscriptSpan(t_start=float(start), t_end=float(min(start + 60, duration_sec)), text=f"minute {start // 60}")
        for start in range(0, int(duration_sec), 60)
    )
    return Transcript(text=" ".join(span.text for span in spans), duration_sec=duration_sec, spans=spans)


class ScriptedExecutor(StageExecutor):
    """
    Plays back a script of outcomes, one per call.

    An exception in the script is raised, anything else is returned. The
    last entry repeats once the script runs out.
    """

    def __init__(self, name: str, stage: PipelineStage, script: List[Any]):
        self.name = name
        self.stage = stage
        self.script = list(script)
        self.calls: List[Any] = []

    async def execute(self, job_id, stage_input, report_progress):
        self.calls.append(stage_input)
        outcome = self.script[min(len(self.calls), len(self.script)) - 1]
        await report_progress(50)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeQuestionExecutor(StageExecutor):
    """Three questions per segment; optionally fails or blocks on one segment index"""

    name = "generate_questions"
    stage = PipelineStage.GENERATING_QUESTIONS

    def __init__(self, fail_on: Optional[int] = None, block_on: Optional[int] = None):
        self.fail_on = fail_on
        self.block_on = block_on
        self.calls: List[int] = []
        self.started: Optional[asyncio.Event] = None
        self.release: Optional[asyncio.Event] = None

    async def execute(self, job_id, segment, report_progress):
        self.calls.append(segment.index)
        if segment.index == self.fail_on:
            raise PermanentExecutorError(f"segment {segment.index} rejected by model", kind="engine_rejected")
        if segment.index == self.block_on:
            self.started.set()
            await self.release.wait()
        return [make_question(segment, n) for n in range(3)]


class BlockingExecutor(StageExecutor):
    """Signals `started` and waits for `release` before returning its output"""

    def __init__(self, name: str, stage: PipelineStage, output: Any):
        self.name = name
        self.stage = stage
        self.output = output
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def execute(self, job_id, stage_input, report_progress):
        self.started.set()
        await self.release.wait()
        return self.output


class RecordingSleep:
    """Stand-in for asyncio.sleep that records backoff delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def config(tmp_path):
    return WorkerConfig(
        ENABLE_OPENAI=False,
        ENABLE_HTTP_SERVER=False,
        RETRY_BASE_DELAY_MS=10,
        MAX_BACKOFF_MS=40,
        LOG_DIR=str(tmp_path / "logs"),
        DATA_DIR=str(tmp_path)
    )


@pytest.fixture
def make_orchestrator(config):
    """Factory building an orchestrator over fake executors; keyword arguments replace defaults"""

    def build(**overrides) -> PipelineOrchestrator:
        parts = {
            'registry': JobRegistry(),
            'store': InMemoryTranscriptStore(),
            'transcoder': ScriptedExecutor(
                "transcode", PipelineStage.TRANSCODING,
                [MediaRef(video_path="video.mp4", audio_path="audio.mp3", duration_sec=LECTURE_DURATION_SEC)]
            ),
            'transcriber': ScriptedExecutor(
                "transcribe", PipelineStage.TRANSCRIBING, [lecture_transcript()]
            ),
            'segmenter': WindowSegmentExecutor(window_sec=config.SEGMENT_WINDOW_SEC),
            'question_generator': FakeQuestionExecutor(),
            'sleep': RecordingSleep(),
        }
        parts.update(overrides)
        return PipelineOrchestrator(config, **parts)

    return build
