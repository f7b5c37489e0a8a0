"""
Abstract base class for transcript and question storage.

Defines the interface that all storage backends must implement, enabling
easy swapping between the in-memory store and Postgres.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List

from ..models import AnswerOption, Question, Segment


class TranscriptStore(ABC):
    """Authoritative store of segments and questions, partitioned by job id"""

    def connect(self) -> None:
        """Open connections, if the backend has any"""

    def close(self) -> None:
        """Release connections, if the backend has any"""

    @abstractmethod
    def write_segments(self, job_id: str, segments: List[Segment]) -> None:
        """
        Store the segment batch for a job.

        Args:
            job_id: ID of the owning job
            segments: Segments ordered by index, starting at 0

        Raises:
            AlreadyWritten: if segments already exist for the job
            InvariantViolation: if the batch is not contiguous
        """
        pass

    @abstractmethod
    def write_questions(self, segment_id: str, questions: List[Question]) -> None:
        """
        Replace the question batch for one segment.

        Args:
            segment_id: ID of the owning segment
            questions: Questions in creation order

        Raises:
            NotFound: if the segment does not exist
            InvalidQuestion: if any question breaks the single-correct rule
        """
        pass

    @abstractmethod
    def edit_question(self, question_id: str, new_text: str, new_options: List[AnswerOption]) -> Question:
        """
        Replace a question's text and options all-or-nothing.

        Returns:
            The committed question

        Raises:
            NotFound: if the question does not exist
            InvalidQuestion: if the new content breaks the single-correct rule
        """
        pass

    @abstractmethod
    def get_segments(self, job_id: str) -> List[Segment]:
        """Segments of a job ordered by index (empty if none were written)"""
        pass

    @abstractmethod
    def get_segment(self, segment_id: str) -> Segment:
        """Raises NotFound for an unknown segment"""
        pass

    @abstractmethod
    def get_questions(self, segment_id: str) -> List[Question]:
        """Questions of a segment in creation order; raises NotFound for an unknown segment"""
        pass

    @abstractmethod
    def get_question(self, question_id: str) -> Question:
        """Raises NotFound for an unknown question"""
        pass

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        """Storage statistics for monitoring"""
        pass

    def has_segments(self, job_id: str) -> bool:
        return bool(self.get_segments(job_id))

    def get_job_questions(self, job_id: str) -> List[Dict[str, Any]]:
        """Questions of a job grouped per segment, in segment order"""
        return [
            {
                'segment_id': segment.id,
                'questions': self.get_questions(segment.id)
            }
            for segment in self.get_segments(job_id)
        ]
