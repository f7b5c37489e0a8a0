"""
Job registry.

Maps a job id to the latest committed snapshot of its pipeline state. Writers
serialize on a lock and publish a new immutable Job; readers look the
snapshot up without locking and can never observe a half-applied update.
"""

import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Dict, Any, List, Optional, Set

from .errors import InvariantViolation, NotFound
from .models import Job, JobError, PipelineStage

logger = logging.getLogger("lecture_worker")


class JobRegistry:
    """In-process registry of job snapshots"""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._cancel_requested: Set[str] = set()
        self._write_lock = threading.Lock()

    def create_job(self, source_ref: str, size_bytes: int, original_name: Optional[str] = None) -> str:
        """
        Register a new job in the Received stage.

        Args:
            source_ref: Opaque reference to the uploaded content
            size_bytes: Size of the upload in bytes
            original_name: Original filename, if the upload layer supplied one

        Returns:
            The new job id
        """
        if not source_ref:
            raise ValueError("source_ref must not be empty")
        if size_bytes < 0:
            raise ValueError("size_bytes must not be negative")

        now = datetime.now()
        job = Job(
            id=str(uuid.uuid4()),
            source_ref=source_ref,
            size_bytes=size_bytes,
            original_name=original_name,
            created_at=now,
            updated_at=now
        )
        with self._write_lock:
            self._jobs[job.id] = job

        logger.info(f"Created job {job.id} for source {source_ref} ({size_bytes} bytes)")
        return job.id

    def get_job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFound("Job", job_id)
        return job

    def get_status(self, job_id: str) -> Dict[str, Any]:
        """Latest committed {stage, progress, error?} for a job"""
        return self.get_job(job_id).status()

    def list_jobs(self) -> List[Job]:
        """All jobs, oldest first"""
        jobs = list(self._jobs.values())
        jobs.sort(key=lambda job: job.created_at or datetime.min)
        return jobs

    def update_progress(self, job_id: str, progress: int, stage: Optional[PipelineStage] = None) -> bool:
        """
        Record incremental progress within the current stage.

        Progress is clamped to 0..100 and never moves backwards within a
        stage. An update tagged with a stage the job has already left is
        dropped.

        Returns:
            True if the update was applied
        """
        progress = max(0, min(100, int(progress)))

        with self._write_lock:
            job = self._require(job_id)
            if job.stage.is_terminal:
                return False
            if stage is not None and stage != job.stage:
                logger.debug(f"Dropping stale progress for job {job_id}: {stage.value} != {job.stage.value}")
                return False
            if progress <= job.progress:
                return False
            self._commit(job, progress=progress)
            return True

    def enter_stage(self, job_id: str, stage: PipelineStage) -> Job:
        """Advance a job to the next stage in order, resetting progress"""
        with self._write_lock:
            job = self._require(job_id)
            self._check_transition(job, stage)
            updated = self._commit(
                job,
                stage=stage,
                progress=0,
                attempts=0,
                history=job.history + (stage,)
            )

        logger.info(f"Job {job_id} entered {stage.value}")
        return updated

    def complete(self, job_id: str) -> Job:
        """Move a job from GeneratingQuestions to Completed"""
        with self._write_lock:
            job = self._require(job_id)
            self._check_transition(job, PipelineStage.COMPLETED)
            updated = self._commit(
                job,
                stage=PipelineStage.COMPLETED,
                progress=100,
                history=job.history + (PipelineStage.COMPLETED,)
            )
            self._cancel_requested.discard(job_id)

        logger.info(f"Job {job_id} completed")
        return updated

    def fail(self, job_id: str, message: str, retryable: bool = False) -> Job:
        """Move a job to Failed, recording the stage it failed in"""
        with self._write_lock:
            job = self._require(job_id)
            if job.stage.is_terminal:
                raise InvariantViolation(f"Job {job_id} is already {job.stage.value}")
            error = JobError(stage=job.stage, message=message, retryable=retryable)
            updated = self._commit(
                job,
                stage=PipelineStage.FAILED,
                error=error,
                history=job.history + (PipelineStage.FAILED,)
            )
            self._cancel_requested.discard(job_id)

        logger.error(f"Job {job_id} failed in {error.stage.value}: {message}")
        return updated

    def mark_cancelled(self, job_id: str) -> Job:
        """Move a job to Cancelled; progress is left as last reported"""
        with self._write_lock:
            job = self._require(job_id)
            if job.stage.is_terminal:
                raise InvariantViolation(f"Job {job_id} is already {job.stage.value}")
            updated = self._commit(
                job,
                stage=PipelineStage.CANCELLED,
                history=job.history + (PipelineStage.CANCELLED,)
            )
            self._cancel_requested.discard(job_id)

        logger.info(f"Job {job_id} cancelled")
        return updated

    def record_attempt(self, job_id: str) -> int:
        """Bump the retry counter of the current stage"""
        with self._write_lock:
            job = self._require(job_id)
            updated = self._commit(job, attempts=job.attempts + 1)
        return updated.attempts

    def set_duration(self, job_id: str, duration_sec: float) -> None:
        with self._write_lock:
            job = self._require(job_id)
            self._commit(job, duration_sec=duration_sec)

    def request_cancel(self, job_id: str) -> bool:
        """
        Ask for a job to be cancelled.

        Returns:
            False if the job already reached a terminal stage
        """
        with self._write_lock:
            job = self._require(job_id)
            if job.stage.is_terminal:
                return False
            self._cancel_requested.add(job_id)
        return True

    def is_cancel_requested(self, job_id: str) -> bool:
        return job_id in self._cancel_requested

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFound("Job", job_id)
        return job

    def _check_transition(self, job: Job, stage: PipelineStage) -> None:
        if job.stage.is_terminal:
            raise InvariantViolation(f"Job {job.id} is already {job.stage.value}")
        expected = job.stage.next_stage()
        if stage != expected:
            raise InvariantViolation(
                f"Job {job.id} cannot move from {job.stage.value} to {stage.value}; next stage is {expected.value}"
            )

    def _commit(self, job: Job, **changes) -> Job:
        # Caller holds the write lock
        updated = replace(job, updated_at=datetime.now(), **changes)
        self._jobs[job.id] = updated
        return updated
