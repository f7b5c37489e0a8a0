import logging
from typing import List

from .base import ProgressCallback, StageExecutor
from ..errors import PermanentExecutorError
from ..models import PipelineStage, Segment, Transcript, segment_count_for, segment_id_for

logger = logging.getLogger("lecture_worker")


def split_into_windows(job_id: str, transcript: Transcript, window_sec: float) -> List[Segment]:
    """
    Cut a transcript into fixed-duration windows.

    Each timed span goes to the window holding its midpoint. A transcript
    without timing has its words spread evenly over the windows.

    Returns:
        Segments indexed 0..N-1 covering the full duration
    """
    count = segment_count_for(transcript.duration_sec, window_sec)
    if count == 0:
        raise PermanentExecutorError(
            f"Transcript for job {job_id} has no duration ({transcript.duration_sec})",
            kind="empty_transcript"
        )

    texts: List[List[str]] = [[] for _ in range(count)]

    if transcript.spans:
        for span in transcript.spans:
            midpoint = (span.t_start + span.t_end) / 2.0
            idx = min(max(int(midpoint // window_sec), 0), count - 1)
            texts[idx].append(span.text)
    else:
        words = transcript.text.split()
        per_window = len(words) / count
        for n, word in enumerate(words):
            idx = min(int(n // per_window), count - 1) if per_window else 0
            texts[idx].append(word)

    return [
        Segment(
            id=segment_id_for(job_id, idx),
            job_id=job_id,
            index=idx,
            text=" ".join(parts).strip(),
            window_sec=window_sec
        )
        for idx, parts in enumerate(texts)
    ]


class WindowSegmentExecutor(StageExecutor):
    """Split a transcript into fixed-length segments"""

    name = "segment"
    stage = PipelineStage.SEGMENTING

    def __init__(self, window_sec: float = 300.0):
        if window_sec <= 0:
            raise ValueError("window_sec must be positive")
        self.window_sec = window_sec

    async def execute(self, job_id: str, transcript: Transcript, report_progress: ProgressCallback) -> List[Segment]:
        segments = split_into_windows(job_id, transcript, self.window_sec)
        logger.info(f"Split transcript for job {job_id} into {len(segments)} segments of {self.window_sec:.0f}s")
        return segments
