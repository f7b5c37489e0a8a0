"""Base stage executor abstraction."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union

from ..errors import ExecutorError
from ..logging_setup import log_exception
from ..models import PipelineStage, StageFailure, StageSuccess

logger = logging.getLogger("lecture_worker")

ProgressCallback = Callable[[int], Awaitable[None]]
StageResult = Union[StageSuccess, StageFailure]


async def _ignore_progress(percent: int) -> None:
    return None


class StageExecutor(ABC):
    """
    Wraps one engine call behind a uniform asynchronous contract.

    Subclasses implement `execute` and signal failures by raising
    TransientExecutorError or PermanentExecutorError. `run` turns the
    outcome into a StageSuccess or StageFailure for the orchestrator.
    Executors return their output and never write partial state anywhere,
    so calling `run` again after a failure is safe.
    """

    name: str = "base_stage"
    stage: PipelineStage = PipelineStage.RECEIVED

    async def run(self, job_id: str, stage_input: Any,
                  report_progress: Optional[ProgressCallback] = None) -> StageResult:
        """
        Execute the stage once.

        Args:
            job_id: Job the work belongs to
            stage_input: Stage specific input
            report_progress: Awaitable callback taking a 0-100 percentage

        Returns:
            StageSuccess with the stage output, or StageFailure
        """
        try:
            output = await self.execute(job_id, stage_input, report_progress or _ignore_progress)
            return StageSuccess(output=output)
        except ExecutorError as e:
            logger.warning(f"{self.name} failed for job {job_id} ({e.kind}, retryable={e.retryable}): {e.message}")
            return StageFailure(kind=e.kind, message=e.message, retryable=e.retryable)
        except Exception as e:
            log_exception(logger, f"Unexpected error in {self.name} for job {job_id}: {e}")
            return StageFailure(kind="unexpected", message=str(e) or type(e).__name__, retryable=False)

    @abstractmethod
    async def execute(self, job_id: str, stage_input: Any, report_progress: ProgressCallback) -> Any:
        """
        Do the stage work.

        Args:
            job_id: Job the work belongs to
            stage_input: Stage specific input
            report_progress: Awaitable callback taking a 0-100 percentage

        Returns:
            Stage specific output
        """
        pass
