"""
Storage backends for segments and questions.

This module provides the abstract store interface and its concrete
implementations (in-memory and Postgres).
"""

from .base import TranscriptStore
from .memory_adapter import InMemoryTranscriptStore

__all__ = [
    'TranscriptStore',
    'InMemoryTranscriptStore'
]
