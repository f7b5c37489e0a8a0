"""
Error taxonomy for the lecture worker.

Executor errors are classified by whether retrying can help; store and
registry errors describe rejected mutations or unknown identifiers.
"""

from typing import Optional


class WorkerError(Exception):
    """Base class for all worker errors"""


class ExecutorError(WorkerError):
    """Raised by a stage executor when its engine call fails"""

    retryable: bool = False
    default_kind = "executor_error"

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind


class TransientExecutorError(ExecutorError):
    """Retryable failure: network hiccup, rate limit, transient resource pressure"""

    retryable = True
    default_kind = "transient"


class PermanentExecutorError(ExecutorError):
    """Non-retryable failure: malformed input, unsupported content"""

    retryable = False
    default_kind = "permanent"


class InvariantViolation(WorkerError):
    """A mutation would break a data-model guarantee"""


class InvalidQuestion(InvariantViolation):
    """A question does not have exactly one correct option, or is otherwise malformed"""


class AlreadyWritten(WorkerError):
    """Segments were already written for this job"""

    def __init__(self, job_id: str):
        super().__init__(f"Segments already written for job {job_id}")
        self.job_id = job_id


class NotFound(WorkerError):
    """Unknown job, segment or question id"""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id
