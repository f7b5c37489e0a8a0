import json
import logging
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, Field, ValidationError

from .base import ProgressCallback, StageExecutor
from .util import classify_openai_error
from ..errors import InvalidQuestion, TransientExecutorError
from ..models import AnswerOption, PipelineStage, Question, Segment, validate_question

logger = logging.getLogger("lecture_worker")


class GeneratedOption(BaseModel):
    """Answer option as returned by the model"""
    text: str = Field(description="Answer text")
    is_correct: bool = Field(description="True for the single correct answer")


class GeneratedQuestion(BaseModel):
    """Multiple-choice question as returned by the model"""
    question: str = Field(description="Question about the lecture excerpt")
    options: List[GeneratedOption] = Field(description="Answer options, exactly one correct")


class QuestionBatch(BaseModel):
    """Structured output of one generation call"""
    questions: List[GeneratedQuestion] = Field(description="Questions for the excerpt")


def strict_schema(model: type) -> Dict[str, Any]:
    """JSON schema of a pydantic model with additionalProperties: false on every object"""
    schema = model.model_json_schema()

    def add_additional_properties_false(schema_part):
        if isinstance(schema_part, dict):
            if schema_part.get("type") == "object":
                schema_part["additionalProperties"] = False
            for value in schema_part.values():
                add_additional_properties_false(value)
        elif isinstance(schema_part, list):
            for item in schema_part:
                add_additional_properties_false(item)

    add_additional_properties_false(schema)
    return schema


def build_questions(segment: Segment, batch: QuestionBatch) -> List[Question]:
    """
    Turn model output into validated Question records.

    Ids are derived from the segment id and position, so regenerating a
    segment replaces its questions rather than adding new ones.
    """
    questions = []
    for q_idx, generated in enumerate(batch.questions):
        question_id = f"{segment.id}_question_{q_idx:02d}"
        question = Question(
            id=question_id,
            segment_id=segment.id,
            text=generated.question.strip(),
            options=tuple(
                AnswerOption(
                    id=f"option_{o_idx + 1}",
                    text=option.text.strip(),
                    is_correct=option.is_correct
                )
                for o_idx, option in enumerate(generated.options)
            )
        )
        questions.append(validate_question(question))
    return questions


class OpenAIQuestionExecutor(StageExecutor):
    """Generate multiple-choice questions for one segment with an OpenAI chat model"""

    name = "generate_questions"
    stage = PipelineStage.GENERATING_QUESTIONS

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: str = "gpt-4o",
                 questions_per_segment: int = 3, options_per_question: int = 4):
        self.client = client
        self.model = model
        self.questions_per_segment = questions_per_segment
        self.options_per_question = options_per_question

    def _get_client(self) -> AsyncOpenAI:
        if self.client is None:
            self.client = AsyncOpenAI()
        return self.client

    def _prompt(self, segment: Segment) -> str:
        return f"""You are writing review questions for students who watched a lecture.
Write {self.questions_per_segment} multiple-choice questions about the lecture excerpt below.
Each question must have exactly {self.options_per_question} options and exactly one correct option.
Only ask about content stated in the excerpt.

Lecture excerpt ({segment.start_sec:.0f}s - {segment.end_sec:.0f}s):
\"\"\"{segment.text}\"\"\""""

    async def execute(self, job_id: str, segment: Segment, report_progress: ProgressCallback) -> List[Question]:
        if not segment.text.strip():
            logger.info(f"Segment {segment.id} of job {job_id} has no speech, skipping question generation")
            return []

        client = self._get_client()
        logger.info(f"Generating questions for segment {segment.id} of job {job_id}")

        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": self._prompt(segment)}],
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": "question_batch",
                        "schema": strict_schema(QuestionBatch),
                        "strict": True
                    }
                },
                temperature=0.3
            )
        except openai.OpenAIError as e:
            raise classify_openai_error(e, f"Error generating questions for segment {segment.id}")

        content = response.choices[0].message.content
        try:
            batch = QuestionBatch(**json.loads(content or "{}"))
            questions = build_questions(segment, batch)
        except (json.JSONDecodeError, ValidationError, InvalidQuestion) as e:
            raise TransientExecutorError(f"Model returned unusable questions for segment {segment.id}: {e}",
                                         kind="invalid_output")

        if not questions:
            raise TransientExecutorError(f"Model returned no questions for segment {segment.id}", kind="invalid_output")

        logger.info(f"Generated {len(questions)} questions for segment {segment.id}")
        return questions
