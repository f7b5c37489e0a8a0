"""
Pipeline orchestration and execution management.

Drives each job through Transcoding, Transcribing, Segmenting and
GeneratingQuestions, handling retries, deadlines, cancellation and progress
tracking. Every job runs as its own asyncio task; stages of one job run
strictly one after another while different jobs progress independently.
"""

import asyncio
import time
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .adapters.base import TranscriptStore
from .config import WorkerConfig
from .errors import AlreadyWritten
from .logging_setup import log_exception
from .models import Job, OrchestratorStats, PipelineStage, Question, Segment, StageFailure, Transcript
from .pipeline.base import ProgressCallback, StageExecutor, StageResult
from .registry import JobRegistry

logger = logging.getLogger("lecture_worker")


class StageFailed(Exception):
    """Raised inside a job task once the job has been moved to Failed"""

    def __init__(self, job_id: str, stage: PipelineStage, reason: str):
        super().__init__(f"Job {job_id} failed in {stage.value}: {reason}")
        self.job_id = job_id
        self.stage = stage
        self.reason = reason


class PipelineOrchestrator:
    """Manages pipeline execution flow and coordination"""

    def __init__(self, config: WorkerConfig, registry: JobRegistry, store: TranscriptStore,
                 transcoder: StageExecutor, transcriber: StageExecutor,
                 segmenter: StageExecutor, question_generator: StageExecutor,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.config = config
        self.registry = registry
        self.store = store
        self.transcoder = transcoder
        self.transcriber = transcriber
        self.segmenter = segmenter
        self.question_generator = question_generator
        self._sleep = sleep
        self._tasks: Dict[str, asyncio.Task] = {}
        self.stats = OrchestratorStats()

    # ── Job lifecycle ─────────────────────────────────────────────────

    def submit(self, source_ref: str, size_bytes: int, original_name: Optional[str] = None) -> str:
        """
        Create a job and start its pipeline.

        Must be called from inside the running event loop. The job is in
        Transcoding with progress 0 by the time this returns.

        Args:
            source_ref: Reference to the already validated upload
            size_bytes: Size of the upload
            original_name: Original filename, if known

        Returns:
            The new job id
        """
        loop = asyncio.get_running_loop()
        job_id = self.registry.create_job(source_ref, size_bytes, original_name)
        self.registry.enter_stage(job_id, PipelineStage.TRANSCODING)
        self.stats.jobs_submitted += 1

        task = loop.create_task(self.execute_pipeline(job_id), name=f"pipeline-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda finished: self._on_task_done(job_id, finished))
        return job_id

    def cancel(self, job_id: str) -> bool:
        """
        Request cancellation of a job.

        The job stops at its next suspension point and moves to Cancelled.
        Store writes that already committed are kept.

        Returns:
            False if the job had already reached a terminal stage
        """
        if not self.registry.request_cancel(job_id):
            return False

        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            task.cancel()
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    async def wait(self, job_id: str) -> Job:
        """Wait for a job's pipeline to finish and return its final snapshot"""
        task = self._tasks.get(job_id)
        if task is not None:
            # Shield so a cancelled waiter does not cancel the job itself
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self.registry.get_job(job_id)

    def running_jobs(self) -> List[str]:
        return [job_id for job_id, task in self._tasks.items() if not task.done()]

    async def shutdown(self) -> None:
        """Cancel every running job and wait for them to settle"""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for job_id in self.running_jobs():
            self.cancel(job_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Orchestrator shut down, {len(tasks)} running jobs cancelled")

    def _on_task_done(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        # A task cancelled before it started never ran its own cancellation handling
        if task.cancelled() and not self.registry.get_job(job_id).stage.is_terminal:
            self._mark_cancelled(job_id)

    # ── Pipeline ──────────────────────────────────────────────────────

    async def execute_pipeline(self, job_id: str) -> Job:
        """
        Run every stage of one job in order.

        Returns:
            The job's final snapshot
        """
        start_time = time.time()
        job = self.registry.get_job(job_id)
        logger.info(f"Executing pipeline for job {job_id}, source {job.source_ref}")

        try:
            if job.stage == PipelineStage.RECEIVED:
                self.registry.enter_stage(job_id, PipelineStage.TRANSCODING)

            media = await self._run_stage(job_id, PipelineStage.TRANSCODING, self.transcoder, job.source_ref)
            self._advance(job_id, PipelineStage.TRANSCRIBING)

            transcript: Transcript = await self._run_stage(
                job_id, PipelineStage.TRANSCRIBING, self.transcriber, media
            )
            self.registry.set_duration(job_id, transcript.duration_sec)
            self._advance(job_id, PipelineStage.SEGMENTING)

            segments = await self._segment(job_id, transcript)
            self._advance(job_id, PipelineStage.GENERATING_QUESTIONS)

            await self._generate_questions(job_id, segments)
            self._check_cancelled(job_id)
            self.registry.complete(job_id)
            self.stats.jobs_completed += 1
            logger.info(f"Pipeline completed successfully for job {job_id}")

        except StageFailed as e:
            self.stats.jobs_failed += 1
            logger.error(f"Pipeline failed for job {job_id}: {e.reason}")

        except asyncio.CancelledError:
            self._mark_cancelled(job_id)

        except Exception as e:
            log_exception(logger, f"Unexpected error in pipeline execution for job {job_id}: {e}")
            if not self.registry.get_job(job_id).stage.is_terminal:
                self.registry.fail(job_id, f"Unexpected error: {e}")
                self.stats.jobs_failed += 1

        finally:
            self.stats.total_processing_time += time.time() - start_time

        return self.registry.get_job(job_id)

    def _advance(self, job_id: str, next_stage: PipelineStage) -> None:
        """Close the current stage at 100% and enter the next one at 0%"""
        current = self.registry.get_job(job_id).stage
        self.registry.update_progress(job_id, 100, current)
        self._check_cancelled(job_id)
        self.registry.enter_stage(job_id, next_stage)

    def _check_cancelled(self, job_id: str) -> None:
        if self.registry.is_cancel_requested(job_id):
            raise asyncio.CancelledError()

    def _mark_cancelled(self, job_id: str) -> None:
        job = self.registry.get_job(job_id)
        if job.stage.is_terminal:
            return
        self.registry.mark_cancelled(job_id)
        self.stats.jobs_cancelled += 1
        logger.info(f"Job {job_id} stopped in {job.stage.value} after cancellation")

    async def _segment(self, job_id: str, transcript: Transcript) -> List[Segment]:
        segments = await self._run_stage(job_id, PipelineStage.SEGMENTING, self.segmenter, transcript)
        try:
            await asyncio.to_thread(self.store.write_segments, job_id, segments)
        except AlreadyWritten:
            # Crash-and-retry: keep the committed set instead of writing a second one
            segments = await asyncio.to_thread(self.store.get_segments, job_id)
            logger.warning(f"Segments for job {job_id} already written, reusing {len(segments)} stored segments")
        return segments

    async def _generate_questions(self, job_id: str, segments: List[Segment]) -> None:
        total = len(segments)
        stage = PipelineStage.GENERATING_QUESTIONS

        for idx, segment in enumerate(segments):
            self._check_cancelled(job_id)
            questions: List[Question] = await self._run_stage(
                job_id, stage, self.question_generator, segment,
                progress_base=idx / total * 100,
                progress_span=1.0 / total,
                failure_context=f"segment {segment.index}"
            )
            await asyncio.to_thread(self.store.write_questions, segment.id, questions)
            self.registry.update_progress(job_id, int((idx + 1) / total * 100), stage)
            logger.debug(f"Job {job_id} questions ready for {idx + 1}/{total} segments")

    # ── Stage execution with retry ────────────────────────────────────

    async def _run_stage(self, job_id: str, stage: PipelineStage, executor: StageExecutor, stage_input: Any,
                         progress_base: float = 0.0, progress_span: float = 1.0,
                         failure_context: Optional[str] = None) -> Any:
        """
        Run one stage executor with retries and a per-attempt deadline.

        Returns:
            The executor output

        Raises:
            StageFailed: after moving the job to Failed
        """
        max_attempts = self.config.MAX_ATTEMPTS
        reporter = self._progress_reporter(job_id, stage, progress_base, progress_span)
        attempt = 0

        while True:
            attempt += 1
            self._check_cancelled(job_id)
            logger.info(f"Job {job_id}: running {executor.name} (attempt {attempt}/{max_attempts})")

            result = await self._attempt(job_id, stage, executor, stage_input, reporter)
            if result.ok:
                return result.output

            reason = result.message
            if failure_context:
                reason = f"{failure_context}: {reason}"

            if not result.retryable:
                self._fail(job_id, stage, reason, retryable=False)

            if attempt >= max_attempts:
                self._fail(job_id, stage, f"{reason} (gave up after {attempt} attempts)", retryable=True)

            delay = self.config.backoff_delay(attempt)
            self.registry.record_attempt(job_id)
            self.stats.stage_retries += 1
            logger.warning(
                f"Job {job_id}: {executor.name} failed (attempt {attempt}/{max_attempts}, {result.kind}): "
                f"{reason}; retrying in {delay:.2f}s"
            )
            await self._sleep(delay)

    async def _attempt(self, job_id: str, stage: PipelineStage, executor: StageExecutor,
                       stage_input: Any, reporter: ProgressCallback) -> StageResult:
        timeout = self.config.stage_timeout(stage)
        try:
            return await asyncio.wait_for(executor.run(job_id, stage_input, reporter), timeout)
        except asyncio.TimeoutError:
            return StageFailure(
                kind="timeout",
                message=f"{executor.name} exceeded its {timeout:.0f}s deadline",
                retryable=True
            )

    def _fail(self, job_id: str, stage: PipelineStage, reason: str, retryable: bool) -> None:
        self.registry.fail(job_id, reason, retryable=retryable)
        raise StageFailed(job_id, stage, reason)

    def _progress_reporter(self, job_id: str, stage: PipelineStage,
                           base: float, span: float) -> ProgressCallback:
        async def report(percent: int) -> None:
            percent = max(0, min(100, percent))
            self.registry.update_progress(job_id, int(base + span * percent), stage)
            # Every progress report is a suspension point
            await asyncio.sleep(0)

        return report

    # ── Statistics ────────────────────────────────────────────────────

    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics"""
        uptime = (datetime.now() - self.stats.start_time).total_seconds()
        finished = self.stats.jobs_completed + self.stats.jobs_failed + self.stats.jobs_cancelled
        return {
            'jobs_submitted': self.stats.jobs_submitted,
            'jobs_completed': self.stats.jobs_completed,
            'jobs_failed': self.stats.jobs_failed,
            'jobs_cancelled': self.stats.jobs_cancelled,
            'jobs_running': len(self.running_jobs()),
            'stage_retries': self.stats.stage_retries,
            'total_processing_time': self.stats.total_processing_time,
            'average_processing_time': (
                self.stats.total_processing_time / finished if finished > 0 else 0
            ),
            'uptime_seconds': uptime,
            'success_rate': self.stats.jobs_completed / finished if finished > 0 else 0
        }
