import asyncio
import logging
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .errors import InvariantViolation, NotFound
from .models import AnswerOption
from .orchestrator import PipelineOrchestrator

logger = logging.getLogger("lecture_worker")


class CreateJobRequest(BaseModel):
    """Hand-off from the upload layer"""
    source_ref: str = Field(min_length=1, description="Reference to the stored, validated upload")
    size_bytes: int = Field(ge=0, description="Upload size in bytes")
    original_name: Optional[str] = Field(default=None, description="Original filename")


class OptionPayload(BaseModel):
    id: str = Field(min_length=1)
    text: str
    is_correct: bool = False


class EditQuestionRequest(BaseModel):
    text: str
    options: List[OptionPayload]


def create_app(orchestrator: PipelineOrchestrator) -> FastAPI:
    """Build the HTTP API over an orchestrator, its registry and its store"""
    app = FastAPI(title="Lecture Worker API")
    registry = orchestrator.registry
    store = orchestrator.store

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvariantViolation)
    async def invariant_handler(request: Request, exc: InvariantViolation):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.get("/healthz")
    async def health_check():
        """Health check endpoint"""
        return {"ok": True, "status": "healthy"}

    @app.get("/stats")
    def get_stats():
        """Get worker statistics"""
        return {
            "orchestrator": orchestrator.get_stats(),
            "storage": store.get_stats()
        }

    @app.post("/api/jobs", status_code=201)
    async def create_job(payload: CreateJobRequest):
        """Create a job for an uploaded video and start processing it"""
        job_id = orchestrator.submit(payload.source_ref, payload.size_bytes, payload.original_name)
        return {"job_id": job_id, **registry.get_status(job_id)}

    @app.get("/api/jobs")
    def list_jobs():
        return [job.to_dict() for job in registry.list_jobs()]

    @app.get("/api/jobs/{job_id}")
    def get_job(job_id: str):
        return registry.get_job(job_id).to_dict()

    @app.get("/api/jobs/{job_id}/status")
    def get_status(job_id: str):
        return registry.get_status(job_id)

    @app.post("/api/jobs/{job_id}/cancel")
    async def cancel_job(job_id: str):
        cancelled = orchestrator.cancel(job_id)
        return {"cancelled": cancelled, **registry.get_status(job_id)}

    def require_job_output(job_id: str) -> None:
        """Known to this process, or stored by an earlier one"""
        try:
            registry.get_job(job_id)
        except NotFound:
            if not store.has_segments(job_id):
                raise

    @app.get("/api/jobs/{job_id}/segments")
    def get_segments(job_id: str):
        require_job_output(job_id)
        return [segment.to_dict() for segment in store.get_segments(job_id)]

    @app.get("/api/jobs/{job_id}/questions")
    def get_job_questions(job_id: str):
        require_job_output(job_id)
        return [
            {
                "segment_id": group["segment_id"],
                "questions": [question.to_dict() for question in group["questions"]]
            }
            for group in store.get_job_questions(job_id)
        ]

    @app.get("/api/segments/{segment_id}/questions")
    def get_questions(segment_id: str):
        return [question.to_dict() for question in store.get_questions(segment_id)]

    @app.put("/api/questions/{question_id}")
    def edit_question(question_id: str, payload: EditQuestionRequest):
        options = [
            AnswerOption(id=option.id, text=option.text, is_correct=option.is_correct)
            for option in payload.options
        ]
        return store.edit_question(question_id, payload.text, options).to_dict()

    return app


class HealthServer:
    """Serves the API with uvicorn on the worker's own event loop"""

    def __init__(self, orchestrator: PipelineOrchestrator, host: str = "0.0.0.0", port: int = 8000):
        self.port = port
        self.app = create_app(orchestrator)
        self.server = uvicorn.Server(uvicorn.Config(
            self.app,
            host=host,
            port=port,
            log_level="warning",  # Reduce uvicorn logging
            access_log=False
        ))
        self.server_task: Optional[asyncio.Task] = None

    def start(self):
        """Start serving in a background task"""
        if self.server_task is not None:
            return
        self.server_task = asyncio.get_running_loop().create_task(self.server.serve(), name="http-server")
        logger.info(f"HTTP server started on port {self.port}")

    async def stop(self):
        """Stop the HTTP server"""
        if self.server_task is None:
            return
        self.server.should_exit = True
        await self.server_task
        self.server_task = None
        logger.info("HTTP server stopped")


def start_health_server(orchestrator: PipelineOrchestrator, enabled: bool, host: str, port: int) -> Optional[HealthServer]:
    """Start the HTTP server if enabled"""
    if enabled:
        server = HealthServer(orchestrator, host, port)
        server.start()
        return server
    return None
