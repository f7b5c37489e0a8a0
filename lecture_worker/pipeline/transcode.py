import asyncio
import os
import ffmpeg
import logging
from typing import Optional

from .base import ProgressCallback, StageExecutor
from .util import ensure_dir, get_job_output_dir, resolve_media_path
from ..errors import PermanentExecutorError, TransientExecutorError
from ..models import MediaRef, PipelineStage

logger = logging.getLogger("lecture_worker")


def probe_duration(path: str) -> float:
    """Duration of the first video stream, falling back to the container duration"""
    probe = ffmpeg.probe(path)
    video_stream = next(
        (stream for stream in probe['streams'] if stream['codec_type'] == 'video'),
        None
    )
    if video_stream is None:
        raise PermanentExecutorError(f"No video stream in {path}", kind="unsupported_content")
    duration = video_stream.get('duration') or probe.get('format', {}).get('duration') or 0
    return float(duration)


def normalize_video(input_path: str, output_path: str) -> None:
    """Normalize video to 720p, 30fps H.264"""
    (
        ffmpeg
        .input(input_path)
        .video
        .filter('scale', -2, 720)  # Scale to 720p height, maintain aspect ratio
        .filter('fps', 30)         # 30fps
        .output(
            output_path,
            vcodec='libx264',
            crf=22,
            preset='medium'
        )
        .overwrite_output()
        .run(quiet=True)
    )


def extract_audio(input_path: str, output_path: str) -> None:
    """Extract audio as mono 16kHz MP3, small enough to upload for transcription"""
    (
        ffmpeg
        .input(input_path)
        .audio
        .filter('aresample', 16000)  # 16kHz
        .output(
            output_path,
            acodec='libmp3lame',
            ac=1,                     # mono
            ar=16000,                 # 16kHz sample rate
            audio_bitrate='32k'
        )
        .overwrite_output()
        .run(quiet=True)
    )


class FFmpegTranscodeExecutor(StageExecutor):
    """Transcode the uploaded video and extract its audio track"""

    name = "transcode"
    stage = PipelineStage.TRANSCODING

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = data_dir

    async def execute(self, job_id: str, source_ref: str, report_progress: ProgressCallback) -> MediaRef:
        input_path = resolve_media_path(source_ref, self.data_dir)
        if not os.path.exists(input_path):
            raise PermanentExecutorError(f"Source video not found: {input_path}", kind="missing_source")

        output_dir = get_job_output_dir(job_id, self.data_dir)
        ensure_dir(output_dir)
        normalized_path = os.path.join(output_dir, "normalized.mp4")
        audio_path = os.path.join(output_dir, "audio.mp3")

        try:
            source_duration = await asyncio.to_thread(probe_duration, input_path)
            await report_progress(5)

            logger.info(f"Normalizing video for job {job_id}: {input_path} -> {normalized_path}")
            await asyncio.to_thread(normalize_video, input_path, normalized_path)
            await report_progress(60)

            logger.info(f"Extracting audio for job {job_id}: {audio_path}")
            await asyncio.to_thread(extract_audio, input_path, audio_path)
            await report_progress(90)

            # Verify files exist and get actual duration
            if not os.path.exists(normalized_path) or not os.path.exists(audio_path):
                raise TransientExecutorError("Transcode produced no output files", kind="missing_output")

            duration = await asyncio.to_thread(probe_duration, normalized_path) or source_duration

        except ffmpeg.Error as e:
            stderr = e.stderr.decode(errors="replace") if e.stderr else str(e)
            raise PermanentExecutorError(f"FFmpeg error transcoding job {job_id}: {stderr}", kind="unsupported_content")
        except OSError as e:
            raise TransientExecutorError(f"I/O error transcoding job {job_id}: {e}", kind="io_error")

        logger.info(f"Job {job_id} transcoded successfully. Duration: {duration:.2f}s")
        return MediaRef(video_path=normalized_path, audio_path=audio_path, duration_sec=duration)
