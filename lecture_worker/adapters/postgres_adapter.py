"""
Postgres transcript store.

Each batch write runs in a single transaction, so a segment set or a
segment's question batch becomes visible to readers all at once.
"""

import json
import logging
from typing import Optional, Dict, Any, List

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from .base import TranscriptStore
from ..errors import AlreadyWritten, InvalidQuestion, NotFound
from ..logging_setup import log_exception
from ..models import AnswerOption, Question, Segment, validate_options, validate_question, validate_segments

logger = logging.getLogger("lecture_worker")


_SCHEMA = """
CREATE TABLE IF NOT EXISTS segments (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL,
    idx INTEGER NOT NULL,
    window_sec DOUBLE PRECISION NOT NULL,
    text TEXT NOT NULL,
    UNIQUE (job_id, idx)
);

CREATE TABLE IF NOT EXISTS questions (
    id TEXT PRIMARY KEY,
    segment_id TEXT NOT NULL REFERENCES segments(id),
    position INTEGER NOT NULL,
    text TEXT NOT NULL,
    options JSONB NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_questions_segment ON questions(segment_id, position);
"""


class PostgresTranscriptStore(TranscriptStore):
    """Postgres implementation of the transcript store"""

    def __init__(self, database_url: str, pool_size: int = 5, timeout: int = 10):
        self.database_url = database_url
        self.pool_size = pool_size
        self.timeout = timeout
        self.pool: Optional[ConnectionPool] = None

    def connect(self):
        """Initialize connection pool"""
        try:
            self.pool = ConnectionPool(
                self.database_url,
                min_size=1,
                max_size=self.pool_size,
                kwargs={
                    "connect_timeout": self.timeout,
                    "application_name": "lecture_worker"
                }
            )
            logger.info("Postgres transcript store connection pool initialized")
            self._bootstrap_schema()
        except Exception as e:
            log_exception(logger, f"Failed to connect to Postgres transcript store: {e}")
            raise

    def _bootstrap_schema(self):
        """Create tables if they do not exist yet"""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_SCHEMA)
            conn.commit()
        logger.info("Postgres transcript store schema validated")

    def close(self):
        """Close connection pool"""
        if self.pool:
            self.pool.close()
            logger.info("Postgres transcript store connection pool closed")

    def write_segments(self, job_id: str, segments: List[Segment]) -> None:
        segments = list(segments)
        validate_segments(job_id, segments)

        with self.pool.connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    # Serialize concurrent writers of the same job
                    cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (job_id,))
                    cur.execute("SELECT 1 FROM segments WHERE job_id = %s LIMIT 1", (job_id,))
                    if cur.fetchone():
                        raise AlreadyWritten(job_id)

                    cur.executemany("""
                        INSERT INTO segments (id, job_id, idx, window_sec, text)
                        VALUES (%s, %s, %s, %s, %s)
                    """, [
                        (segment.id, segment.job_id, segment.index, segment.window_sec, segment.text)
                        for segment in segments
                    ])

        logger.info(f"Stored {len(segments)} segments for job {job_id}")

    def write_questions(self, segment_id: str, questions: List[Question]) -> None:
        batch = []
        for question in questions:
            if question.segment_id != segment_id:
                raise InvalidQuestion(f"Question {question.id} belongs to segment {question.segment_id}, not {segment_id}")
            batch.append(validate_question(question))

        ids = [question.id for question in batch]
        if len(set(ids)) != len(ids):
            raise InvalidQuestion(f"Duplicate question ids in batch for segment {segment_id}")

        with self.pool.connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute("SELECT 1 FROM segments WHERE id = %s FOR UPDATE", (segment_id,))
                    if not cur.fetchone():
                        raise NotFound("Segment", segment_id)

                    if ids:
                        cur.execute(
                            "SELECT id, segment_id FROM questions WHERE id = ANY(%s) AND segment_id <> %s LIMIT 1",
                            (ids, segment_id)
                        )
                        taken = cur.fetchone()
                        if taken:
                            raise InvalidQuestion(f"Question id {taken[0]} is already used by segment {taken[1]}")

                    cur.execute("DELETE FROM questions WHERE segment_id = %s", (segment_id,))
                    cur.executemany("""
                        INSERT INTO questions (id, segment_id, position, text, options)
                        VALUES (%s, %s, %s, %s, %s)
                    """, [
                        (question.id, segment_id, position, question.text, self._dump_options(question.options))
                        for position, question in enumerate(batch)
                    ])

        logger.info(f"Stored {len(batch)} questions for segment {segment_id}")

    def edit_question(self, question_id: str, new_text: str, new_options: List[AnswerOption]) -> Question:
        if not new_text or not new_text.strip():
            raise InvalidQuestion(f"Question {question_id} text must not be empty")
        options = validate_options(new_options)

        with self.pool.connection() as conn:
            with conn.transaction():
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute("""
                        UPDATE questions
                        SET text = %s, options = %s
                        WHERE id = %s
                        RETURNING id, segment_id, text, options
                    """, (new_text, self._dump_options(options), question_id))
                    row = cur.fetchone()

        if row is None:
            raise NotFound("Question", question_id)

        logger.info(f"Edited question {question_id}")
        return self._row_to_question(row)

    def get_segments(self, job_id: str) -> List[Segment]:
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute("""
                    SELECT id, job_id, idx, window_sec, text
                    FROM segments
                    WHERE job_id = %s
                    ORDER BY idx
                """, (job_id,))
                return [self._row_to_segment(row) for row in cur.fetchall()]

    def get_segment(self, segment_id: str) -> Segment:
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute("""
                    SELECT id, job_id, idx, window_sec, text
                    FROM segments
                    WHERE id = %s
                """, (segment_id,))
                row = cur.fetchone()
        if row is None:
            raise NotFound("Segment", segment_id)
        return self._row_to_segment(row)

    def get_questions(self, segment_id: str) -> List[Question]:
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute("SELECT 1 FROM segments WHERE id = %s", (segment_id,))
                if not cur.fetchone():
                    raise NotFound("Segment", segment_id)
                cur.execute("""
                    SELECT id, segment_id, text, options
                    FROM questions
                    WHERE segment_id = %s
                    ORDER BY position
                """, (segment_id,))
                rows = cur.fetchall()
        return [self._row_to_question(row) for row in rows]

    def get_question(self, question_id: str) -> Question:
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute("""
                    SELECT id, segment_id, text, options
                    FROM questions
                    WHERE id = %s
                """, (question_id,))
                row = cur.fetchone()
        if row is None:
            raise NotFound("Question", question_id)
        return self._row_to_question(row)

    def get_stats(self) -> Dict[str, Any]:
        """Get storage statistics"""
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT COUNT(DISTINCT job_id), COUNT(*) FROM segments")
                    jobs_with_segments, total_segments = cur.fetchone()
                    cur.execute("SELECT COUNT(*) FROM questions")
                    total_questions = cur.fetchone()[0]

            return {
                'storage_type': 'postgres',
                'jobs_with_segments': jobs_with_segments or 0,
                'total_segments': total_segments or 0,
                'total_questions': total_questions or 0
            }
        except psycopg.Error as e:
            log_exception(logger, f"Error getting storage stats: {e}")
            return {'storage_type': 'postgres', 'error': str(e)}

    @staticmethod
    def _dump_options(options) -> Jsonb:
        return Jsonb([option.to_dict() for option in options])

    @staticmethod
    def _row_to_segment(row: Dict[str, Any]) -> Segment:
        return Segment(
            id=row['id'],
            job_id=row['job_id'],
            index=row['idx'],
            text=row['text'],
            window_sec=row['window_sec']
        )

    @staticmethod
    def _row_to_question(row: Dict[str, Any]) -> Question:
        raw_options = row['options']
        if isinstance(raw_options, str):
            raw_options = json.loads(raw_options)
        return Question(
            id=row['id'],
            segment_id=row['segment_id'],
            text=row['text'],
            options=tuple(
                AnswerOption(id=option['id'], text=option['text'], is_correct=bool(option['is_correct']))
                for option in raw_options
            )
        )
