"""
Configuration management for the lecture worker.

Centralizes all configuration loading from environment variables
and provides type-safe access to configuration values.
"""

import os
from typing import Dict, Any
from dataclasses import dataclass, field

from .models import PipelineStage


def _default_stage_timeouts() -> Dict[PipelineStage, float]:
    return {
        PipelineStage.TRANSCODING: 1800.0,
        PipelineStage.TRANSCRIBING: 1800.0,
        PipelineStage.SEGMENTING: 60.0,
        PipelineStage.GENERATING_QUESTIONS: 300.0,
    }


@dataclass
class WorkerConfig:
    """Configuration for the lecture worker"""

    # Storage settings
    STORAGE_TYPE: str = "memory"  # memory, postgres
    STORAGE_CONFIG: Dict[str, Any] = field(default_factory=dict)

    # Segmenting and question generation
    SEGMENT_WINDOW_SEC: float = 300.0
    QUESTIONS_PER_SEGMENT: int = 3
    OPTIONS_PER_QUESTION: int = 4

    # Retry policy
    MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_MS: int = 1000
    BACKOFF_MULTIPLIER: float = 2.0
    MAX_BACKOFF_MS: int = 12000

    # Per-stage deadline, seconds per attempt
    STAGE_TIMEOUT_SEC: Dict[PipelineStage, float] = field(default_factory=_default_stage_timeouts)

    # Engines
    ENABLE_OPENAI: bool = True
    TRANSCRIBE_MODEL: str = "whisper-1"
    QUESTION_MODEL: str = "gpt-4o"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "/app/data/worker"

    # HTTP server
    ENABLE_HTTP_SERVER: bool = True
    HTTP_HOST: str = "0.0.0.0"
    HTTP_PORT: int = 8000

    # Data directory
    DATA_DIR: str = "/app/data"

    @classmethod
    def from_env(cls) -> 'WorkerConfig':
        """Load configuration from environment variables"""
        config = cls()

        # Storage configuration
        config.STORAGE_TYPE = os.getenv("STORAGE_TYPE", "memory")
        config.STORAGE_CONFIG = cls._parse_storage_config()

        # Segmenting and question generation
        config.SEGMENT_WINDOW_SEC = float(os.getenv("SEGMENT_WINDOW_SEC", "300"))
        config.QUESTIONS_PER_SEGMENT = int(os.getenv("QUESTIONS_PER_SEGMENT", "3"))
        config.OPTIONS_PER_QUESTION = int(os.getenv("OPTIONS_PER_QUESTION", "4"))

        # Retry policy
        config.MAX_ATTEMPTS = int(os.getenv("WORKER_MAX_ATTEMPTS", "3"))
        config.RETRY_BASE_DELAY_MS = int(os.getenv("WORKER_RETRY_BASE_MS", "1000"))
        config.BACKOFF_MULTIPLIER = float(os.getenv("WORKER_BACKOFF_MULTIPLIER", "2.0"))
        config.MAX_BACKOFF_MS = int(os.getenv("WORKER_MAX_BACKOFF_MS", "12000"))

        # Stage deadlines
        config.STAGE_TIMEOUT_SEC = {
            PipelineStage.TRANSCODING: float(os.getenv("TRANSCODE_TIMEOUT_SEC", "1800")),
            PipelineStage.TRANSCRIBING: float(os.getenv("TRANSCRIBE_TIMEOUT_SEC", "1800")),
            PipelineStage.SEGMENTING: float(os.getenv("SEGMENT_TIMEOUT_SEC", "60")),
            PipelineStage.GENERATING_QUESTIONS: float(os.getenv("GENERATE_TIMEOUT_SEC", "300")),
        }

        # Engines
        config.ENABLE_OPENAI = os.getenv("ENABLE_OPENAI", "true").lower() == "true"
        config.TRANSCRIBE_MODEL = os.getenv("TRANSCRIBE_MODEL", "whisper-1")
        config.QUESTION_MODEL = os.getenv("QUESTION_MODEL", "gpt-4o")

        # Data directory
        config.DATA_DIR = os.getenv("DATA_DIR", "/app/data")

        # Logging
        config.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        config.LOG_DIR = os.getenv("LOG_DIR", os.path.join(config.DATA_DIR, "worker"))

        # HTTP server
        config.ENABLE_HTTP_SERVER = os.getenv("WORKER_HTTP", "true").lower() == "true"
        config.HTTP_HOST = os.getenv("WORKER_HTTP_HOST", "0.0.0.0")
        config.HTTP_PORT = int(os.getenv("WORKER_HTTP_PORT", "8000"))

        return config

    @classmethod
    def _parse_storage_config(cls) -> Dict[str, Any]:
        """Parse storage specific configuration"""
        storage_type = os.getenv("STORAGE_TYPE", "memory")

        if storage_type == "postgres":
            return {
                "database_url": os.getenv("DATABASE_URL"),
                "connection_pool_size": int(os.getenv("POSTGRES_POOL_SIZE", "5")),
                "connection_timeout": int(os.getenv("POSTGRES_TIMEOUT", "10"))
            }
        else:
            return {}

    def stage_timeout(self, stage: PipelineStage) -> float:
        """Deadline for one attempt of a stage"""
        return self.STAGE_TIMEOUT_SEC.get(stage, 300.0)

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number `attempt` (1-based)"""
        delay_ms = self.RETRY_BASE_DELAY_MS * (self.BACKOFF_MULTIPLIER ** (attempt - 1))
        return min(delay_ms, self.MAX_BACKOFF_MS) / 1000.0

    def validate(self) -> None:
        """Validate configuration and raise errors for missing required values"""
        required_vars = []

        if self.STORAGE_TYPE not in ("memory", "postgres"):
            raise ValueError(f"Unsupported storage type: {self.STORAGE_TYPE}")

        if self.STORAGE_TYPE == "postgres" and not self.STORAGE_CONFIG.get("database_url"):
            required_vars.append("DATABASE_URL")

        # Transcription and question generation both go through OpenAI
        if self.ENABLE_OPENAI and not os.getenv("OPENAI_API_KEY"):
            required_vars.append("OPENAI_API_KEY")

        if required_vars:
            raise ValueError(f"Missing required environment variables: {', '.join(required_vars)}")

        if self.SEGMENT_WINDOW_SEC <= 0:
            raise ValueError("SEGMENT_WINDOW_SEC must be positive")
        if self.MAX_ATTEMPTS < 1:
            raise ValueError("WORKER_MAX_ATTEMPTS must be at least 1")
        if self.OPTIONS_PER_QUESTION < 2:
            raise ValueError("OPTIONS_PER_QUESTION must be at least 2")
        if any(timeout <= 0 for timeout in self.STAGE_TIMEOUT_SEC.values()):
            raise ValueError("Stage timeouts must be positive")
