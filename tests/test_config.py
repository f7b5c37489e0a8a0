"""Configuration loading and validation."""

import pytest

from lecture_worker.config import WorkerConfig
from lecture_worker.models import PipelineStage


def test_defaults():
    config = WorkerConfig()

    assert config.STORAGE_TYPE == "memory"
    assert config.SEGMENT_WINDOW_SEC == 300.0
    assert config.MAX_ATTEMPTS == 3
    assert config.stage_timeout(PipelineStage.TRANSCODING) == 1800.0
    assert config.stage_timeout(PipelineStage.SEGMENTING) == 60.0


def test_backoff_grows_and_caps():
    config = WorkerConfig(RETRY_BASE_DELAY_MS=1000, BACKOFF_MULTIPLIER=2.0, MAX_BACKOFF_MS=3000)

    assert config.backoff_delay(1) == 1.0
    assert config.backoff_delay(2) == 2.0
    assert config.backoff_delay(3) == 3.0
    assert config.backoff_delay(10) == 3.0


def test_from_env(monkeypatch):
    monkeypatch.setenv("STORAGE_TYPE", "postgres")
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/lectures")
    monkeypatch.setenv("SEGMENT_WINDOW_SEC", "120")
    monkeypatch.setenv("WORKER_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("GENERATE_TIMEOUT_SEC", "90")
    monkeypatch.setenv("WORKER_HTTP", "false")
    monkeypatch.setenv("DATA_DIR", "/tmp/lectures")
    monkeypatch.delenv("LOG_DIR", raising=False)

    config = WorkerConfig.from_env()

    assert config.STORAGE_CONFIG["database_url"] == "postgresql://localhost/lectures"
    assert config.SEGMENT_WINDOW_SEC == 120.0
    assert config.MAX_ATTEMPTS == 5
    assert config.stage_timeout(PipelineStage.GENERATING_QUESTIONS) == 90.0
    assert config.ENABLE_HTTP_SERVER is False
    assert config.LOG_DIR == "/tmp/lectures/worker"


def test_validate_requires_openai_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        WorkerConfig().validate()

    WorkerConfig(ENABLE_OPENAI=False).validate()


def test_validate_requires_database_url():
    config = WorkerConfig(STORAGE_TYPE="postgres", ENABLE_OPENAI=False, STORAGE_CONFIG={})

    with pytest.raises(ValueError, match="DATABASE_URL"):
        config.validate()


@pytest.mark.parametrize("overrides", [
    {"STORAGE_TYPE": "redis"},
    {"SEGMENT_WINDOW_SEC": 0},
    {"MAX_ATTEMPTS": 0},
    {"OPTIONS_PER_QUESTION": 1},
])
def test_validate_rejects_bad_values(overrides):
    with pytest.raises(ValueError):
        WorkerConfig(ENABLE_OPENAI=False, **overrides).validate()
