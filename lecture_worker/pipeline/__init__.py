"""
Stage executors for the lecture pipeline.

Each executor wraps one engine call (ffmpeg, Whisper, windowing, question
generation) behind the StageExecutor contract.
"""

from .base import StageExecutor, StageResult, ProgressCallback
from .segment import WindowSegmentExecutor

__all__ = [
    'StageExecutor',
    'StageResult',
    'ProgressCallback',
    'WindowSegmentExecutor'
]
