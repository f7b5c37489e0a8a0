import os
from typing import List

import openai

from ..errors import ExecutorError, PermanentExecutorError, TransientExecutorError


# Environment variable constants
DEFAULT_DATA_DIR = "/app/data"
DEFAULT_PROCESSED_DIR = "processed"

# OpenAI audio uploads are capped at 25MB
MAX_TRANSCRIBE_UPLOAD_BYTES = 25 * 1024 * 1024


def get_data_dir() -> str:
    """Get data directory from environment"""
    return os.getenv("DATA_DIR", DEFAULT_DATA_DIR)


def resolve_media_path(source_ref: str, data_dir: str = None) -> str:
    """Resolve a stored source reference to an absolute path under DATA_DIR"""
    # If source_ref is already absolute, use it
    if os.path.isabs(source_ref):
        return source_ref

    # Otherwise, resolve relative to data directory
    return os.path.join(data_dir or get_data_dir(), source_ref.lstrip("/"))


def get_job_output_dir(job_id: str, data_dir: str = None) -> str:
    """Get output directory for a job"""
    return os.path.join(data_dir or get_data_dir(), DEFAULT_PROCESSED_DIR, str(job_id))


def ensure_dir(path: str):
    """Ensure directory exists"""
    os.makedirs(path, exist_ok=True)


def plan_chunks(duration_sec: float, chunk_sec: float) -> List[tuple]:
    """Split [0, duration) into (start, length) pieces of at most chunk_sec"""
    chunks = []
    start = 0.0
    while start < duration_sec:
        length = min(chunk_sec, duration_sec - start)
        chunks.append((start, length))
        start += chunk_sec
    return chunks


def classify_openai_error(e: Exception, action: str) -> ExecutorError:
    """Map an OpenAI client error to a retryable or permanent executor error"""
    if isinstance(e, (openai.APITimeoutError, openai.APIConnectionError)):
        return TransientExecutorError(f"{action}: {e}", kind="engine_unavailable")
    if isinstance(e, openai.RateLimitError):
        return TransientExecutorError(f"{action}: {e}", kind="rate_limited")
    if isinstance(e, openai.InternalServerError):
        return TransientExecutorError(f"{action}: {e}", kind="engine_error")
    if isinstance(e, openai.APIStatusError):
        return PermanentExecutorError(f"{action}: {e}", kind="engine_rejected")
    return PermanentExecutorError(f"{action}: {e}", kind="engine_error")
