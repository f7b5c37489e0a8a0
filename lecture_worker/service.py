"""
Main worker service.

Wires configuration, logging, storage, stage executors, the orchestrator and
the HTTP API together and runs them on one asyncio event loop.
"""

import asyncio
import signal
import sys
import logging
from typing import Optional, Dict, Any

from .adapters.base import TranscriptStore
from .adapters.memory_adapter import InMemoryTranscriptStore
from .adapters.postgres_adapter import PostgresTranscriptStore
from .config import WorkerConfig
from .http_server import HealthServer, start_health_server
from .logging_setup import setup_logging, log_exception
from .orchestrator import PipelineOrchestrator
from .pipeline.questions import OpenAIQuestionExecutor
from .pipeline.segment import WindowSegmentExecutor
from .pipeline.transcode import FFmpegTranscodeExecutor
from .pipeline.transcribe import WhisperTranscribeExecutor
from .registry import JobRegistry

logger = logging.getLogger("lecture_worker")


class WorkerService:
    """Main worker service"""

    def __init__(self, config: Optional[WorkerConfig] = None):
        self.config = config or WorkerConfig.from_env()
        self.registry: Optional[JobRegistry] = None
        self.store: Optional[TranscriptStore] = None
        self.orchestrator: Optional[PipelineOrchestrator] = None
        self.health_server: Optional[HealthServer] = None
        self.running = False
        self._stop_event: Optional[asyncio.Event] = None

    def initialize(self):
        """Initialize the store, executors and orchestrator based on configuration"""
        try:
            # Setup logging
            setup_logging(self.config.LOG_LEVEL, self.config.LOG_DIR)

            # Validate configuration
            self.config.validate()

            self.registry = JobRegistry()
            self.store = self._create_store()
            self.store.connect()

            self.orchestrator = PipelineOrchestrator(
                self.config,
                self.registry,
                self.store,
                transcoder=FFmpegTranscodeExecutor(data_dir=self.config.DATA_DIR),
                transcriber=WhisperTranscribeExecutor(model=self.config.TRANSCRIBE_MODEL),
                segmenter=WindowSegmentExecutor(window_sec=self.config.SEGMENT_WINDOW_SEC),
                question_generator=OpenAIQuestionExecutor(
                    model=self.config.QUESTION_MODEL,
                    questions_per_segment=self.config.QUESTIONS_PER_SEGMENT,
                    options_per_question=self.config.OPTIONS_PER_QUESTION
                )
            )

            logger.info(f"Worker service initialized with {self.config.STORAGE_TYPE} storage")

        except Exception as e:
            log_exception(logger, f"Failed to initialize worker service: {e}")
            raise

    def _create_store(self) -> TranscriptStore:
        """Create the transcript store based on configuration"""

        if self.config.STORAGE_TYPE == "memory":
            return InMemoryTranscriptStore()

        elif self.config.STORAGE_TYPE == "postgres":
            config = self.config.STORAGE_CONFIG
            return PostgresTranscriptStore(
                database_url=config["database_url"],
                pool_size=config.get("connection_pool_size", 5),
                timeout=config.get("connection_timeout", 10)
            )

        else:
            raise ValueError(f"Unsupported storage type: {self.config.STORAGE_TYPE}")

    async def run(self):
        """Serve until stop() is called"""
        if self.running:
            logger.warning("Worker service is already running")
            return

        self.running = True
        self._stop_event = asyncio.Event()
        self.health_server = start_health_server(
            self.orchestrator,
            self.config.ENABLE_HTTP_SERVER,
            self.config.HTTP_HOST,
            self.config.HTTP_PORT
        )
        logger.info("Worker service started")

        try:
            await self._stop_event.wait()
        finally:
            await self._shutdown()

    def stop(self):
        """Ask the service to shut down"""
        if self._stop_event is not None:
            self._stop_event.set()

    async def _shutdown(self):
        if self.health_server:
            await self.health_server.stop()
        if self.orchestrator:
            await self.orchestrator.shutdown()
        if self.store:
            self.store.close()
        self.running = False
        logger.info("Worker service stopped")

    def get_stats(self) -> Dict[str, Any]:
        """Get worker statistics"""
        stats = {
            'running': self.running,
            'config': {
                'storage_type': self.config.STORAGE_TYPE,
                'segment_window_sec': self.config.SEGMENT_WINDOW_SEC,
                'max_attempts': self.config.MAX_ATTEMPTS
            }
        }

        if self.orchestrator:
            stats['orchestrator'] = self.orchestrator.get_stats()

        return stats


async def _serve(worker: WorkerService):
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, worker.stop)
    await worker.run()


def main():
    """Main entry point"""
    worker = WorkerService()

    try:
        worker.initialize()
        asyncio.run(_serve(worker))
    except Exception as e:
        log_exception(logger, f"Worker failed to start: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
