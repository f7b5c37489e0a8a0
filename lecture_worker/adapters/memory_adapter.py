"""
In-memory transcript store.

Records are immutable; every write builds the new state first and then
swaps it in under the owning job's lock, so readers only ever see a
committed batch. The shared index dicts are only touched while holding
the index lock, which is never held across a whole job's write.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import replace
from typing import Dict, Any, List, Tuple

from .base import TranscriptStore
from ..errors import AlreadyWritten, InvalidQuestion, NotFound
from ..models import AnswerOption, Question, Segment, validate_options, validate_question, validate_segments

logger = logging.getLogger("lecture_worker")


class InMemoryTranscriptStore(TranscriptStore):
    """Process-local store, one lock per job"""

    def __init__(self):
        self._segments_by_job: Dict[str, Tuple[Segment, ...]] = {}
        self._segments: Dict[str, Segment] = {}
        # segment id -> committed question batch
        self._questions_by_segment: Dict[str, Tuple[Question, ...]] = {}
        # question id -> owning segment id
        self._question_owner: Dict[str, str] = {}
        self._job_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()
        self._index_lock = threading.Lock()

    def _lock_for(self, job_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._job_locks[job_id]

    def write_segments(self, job_id: str, segments: List[Segment]) -> None:
        segments = list(segments)
        validate_segments(job_id, segments)

        with self._lock_for(job_id):
            with self._index_lock:
                if job_id in self._segments_by_job:
                    raise AlreadyWritten(job_id)
                for segment in segments:
                    self._segments[segment.id] = segment
                    self._questions_by_segment.setdefault(segment.id, ())
                self._segments_by_job[job_id] = tuple(segments)

        logger.info(f"Stored {len(segments)} segments for job {job_id}")

    def write_questions(self, segment_id: str, questions: List[Question]) -> None:
        segment = self.get_segment(segment_id)
        batch = []
        for question in questions:
            if question.segment_id != segment_id:
                raise InvalidQuestion(f"Question {question.id} belongs to segment {question.segment_id}, not {segment_id}")
            batch.append(validate_question(question))

        ids = [question.id for question in batch]
        if len(set(ids)) != len(ids):
            raise InvalidQuestion(f"Duplicate question ids in batch for segment {segment_id}")

        with self._lock_for(segment.job_id):
            with self._index_lock:
                for question_id in ids:
                    owner = self._question_owner.get(question_id)
                    if owner is not None and owner != segment_id:
                        raise InvalidQuestion(f"Question id {question_id} is already used by segment {owner}")

                previous = self._questions_by_segment.get(segment_id, ())
                self._questions_by_segment[segment_id] = tuple(batch)
                for question in batch:
                    self._question_owner[question.id] = segment_id
                for question in previous:
                    if question.id not in ids:
                        self._question_owner.pop(question.id, None)

        logger.info(f"Stored {len(batch)} questions for segment {segment_id}")

    def edit_question(self, question_id: str, new_text: str, new_options: List[AnswerOption]) -> Question:
        current = self.get_question(question_id)
        if not new_text or not new_text.strip():
            raise InvalidQuestion(f"Question {question_id} text must not be empty")
        options = validate_options(new_options)
        edited = replace(current, text=new_text, options=options)

        segment = self.get_segment(current.segment_id)
        with self._lock_for(segment.job_id):
            with self._index_lock:
                batch = self._questions_by_segment.get(segment.id, ())
                if not any(question.id == question_id for question in batch):
                    raise NotFound("Question", question_id)
                self._questions_by_segment[segment.id] = tuple(
                    edited if question.id == question_id else question
                    for question in batch
                )

        logger.info(f"Edited question {question_id}")
        return edited

    def get_segments(self, job_id: str) -> List[Segment]:
        with self._index_lock:
            return list(self._segments_by_job.get(job_id, ()))

    def get_segment(self, segment_id: str) -> Segment:
        with self._index_lock:
            segment = self._segments.get(segment_id)
        if segment is None:
            raise NotFound("Segment", segment_id)
        return segment

    def get_questions(self, segment_id: str) -> List[Question]:
        with self._index_lock:
            batch = self._questions_by_segment.get(segment_id)
        if batch is None:
            raise NotFound("Segment", segment_id)
        return list(batch)

    def get_question(self, question_id: str) -> Question:
        with self._index_lock:
            segment_id = self._question_owner.get(question_id)
            batch = self._questions_by_segment.get(segment_id, ()) if segment_id is not None else ()
        for question in batch:
            if question.id == question_id:
                return question
        raise NotFound("Question", question_id)

    def get_stats(self) -> Dict[str, Any]:
        with self._index_lock:
            batches = list(self._questions_by_segment.values())
            jobs_with_segments = len(self._segments_by_job)
            total_segments = len(self._segments)
        return {
            'storage_type': 'memory',
            'jobs_with_segments': jobs_with_segments,
            'total_segments': total_segments,
            'total_questions': sum(len(batch) for batch in batches)
        }
