"""
Lecture worker: turns an uploaded lecture video into a segmented transcript
with multiple-choice questions per segment.
"""

__version__ = "0.1.0"
