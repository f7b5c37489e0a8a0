import asyncio
import os
import ffmpeg
import logging
from typing import List, Optional

import openai
from openai import AsyncOpenAI

from .base import ProgressCallback, StageExecutor
from .util import MAX_TRANSCRIBE_UPLOAD_BYTES, classify_openai_error, plan_chunks
from ..errors import PermanentExecutorError, TransientExecutorError
from ..models import MediaRef, PipelineStage, Transcript, TranscriptSpan

logger = logging.getLogger("lecture_worker")

# Chunk length used when the audio file is too large for a single upload
DEFAULT_CHUNK_SEC = 1200.0


def cut_audio(audio_path: str, output_path: str, start: float, length: float) -> None:
    """Copy one time range of the audio file"""
    (
        ffmpeg
        .input(audio_path, ss=start, t=length)
        .output(output_path, acodec='copy')
        .overwrite_output()
        .run(quiet=True)
    )


class WhisperTranscribeExecutor(StageExecutor):
    """Transcribe the extracted audio with OpenAI Whisper"""

    name = "transcribe"
    stage = PipelineStage.TRANSCRIBING

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: str = "whisper-1",
                 chunk_sec: float = DEFAULT_CHUNK_SEC):
        self.client = client
        self.model = model
        self.chunk_sec = chunk_sec

    def _get_client(self) -> AsyncOpenAI:
        if self.client is None:
            self.client = AsyncOpenAI()
        return self.client

    async def execute(self, job_id: str, media: MediaRef, report_progress: ProgressCallback) -> Transcript:
        if not os.path.exists(media.audio_path):
            raise PermanentExecutorError(f"Audio file not found: {media.audio_path}", kind="missing_source")

        logger.info(f"Transcribing audio for job {job_id}: {media.audio_path}")

        if os.path.getsize(media.audio_path) <= MAX_TRANSCRIBE_UPLOAD_BYTES:
            spans, text = await self._transcribe_file(job_id, media.audio_path, offset=0.0)
        else:
            spans, text = await self._transcribe_chunked(job_id, media, report_progress)

        if not text.strip():
            raise PermanentExecutorError(f"No speech detected for job {job_id}", kind="empty_transcript")

        # Probed media length bounds the windows; Whisper timestamps can overshoot it
        duration = media.duration_sec
        if duration <= 0:
            duration = spans[-1].t_end if spans else 0.0

        logger.info(f"Transcription completed for job {job_id}: {len(spans)} spans, {duration:.2f}s")
        return Transcript(text=text, duration_sec=duration, spans=tuple(spans))

    async def _transcribe_chunked(self, job_id: str, media: MediaRef, report_progress: ProgressCallback):
        chunks = plan_chunks(media.duration_sec, self.chunk_sec)
        logger.info(f"Audio for job {job_id} exceeds upload limit, transcribing in {len(chunks)} chunks")

        spans: List[TranscriptSpan] = []
        texts: List[str] = []
        chunk_dir = os.path.join(os.path.dirname(media.audio_path), "chunks")
        os.makedirs(chunk_dir, exist_ok=True)

        for idx, (start, length) in enumerate(chunks):
            chunk_path = os.path.join(chunk_dir, f"chunk_{idx:03d}.mp3")
            try:
                await asyncio.to_thread(cut_audio, media.audio_path, chunk_path, start, length)
            except ffmpeg.Error as e:
                stderr = e.stderr.decode(errors="replace") if e.stderr else str(e)
                raise TransientExecutorError(f"FFmpeg error cutting audio chunk {idx}: {stderr}", kind="io_error")

            chunk_spans, chunk_text = await self._transcribe_file(job_id, chunk_path, offset=start)
            spans.extend(chunk_spans)
            texts.append(chunk_text)
            await report_progress(int((idx + 1) / len(chunks) * 100))

        return spans, " ".join(text for text in texts if text)

    async def _transcribe_file(self, job_id: str, path: str, offset: float):
        client = self._get_client()
        try:
            with open(path, 'rb') as audio_file:
                transcript = await client.audio.transcriptions.create(
                    model=self.model,
                    file=audio_file,
                    response_format="verbose_json",
                    timestamp_granularities=["segment"]
                )
        except openai.OpenAIError as e:
            raise classify_openai_error(e, f"Error transcribing audio for job {job_id}")

        spans = []
        if getattr(transcript, 'segments', None):
            for segment in transcript.segments:
                text = segment.text.strip()
                if text:
                    spans.append(TranscriptSpan(
                        t_start=offset + segment.start,
                        t_end=offset + segment.end,
                        text=text
                    ))
        elif transcript.text:
            # Fallback if no segments
            spans.append(TranscriptSpan(
                t_start=offset,
                t_end=offset + float(getattr(transcript, 'duration', 0.0) or 0.0),
                text=transcript.text.strip()
            ))

        return spans, (transcript.text or "").strip()
