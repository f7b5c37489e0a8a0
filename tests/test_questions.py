"""Question generation tests with a stubbed chat client."""

import asyncio
import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from lecture_worker.errors import InvalidQuestion, PermanentExecutorError, TransientExecutorError
from lecture_worker.models import Segment
from lecture_worker.pipeline.questions import (
    OpenAIQuestionExecutor, QuestionBatch, build_questions, strict_schema
)
from lecture_worker.pipeline.util import classify_openai_error, plan_chunks

SEGMENT = Segment(id="job_segment_001", job_id="job", index=1, text="Entropy measures disorder.")


def batch_payload(correct=(0, 0)):
    return {
        "questions": [
            {
                "question": f"Question {n}?",
                "options": [
                    {"text": f"Answer {o}", "is_correct": o == correct[n]}
                    for o in range(4)
                ]
            }
            for n in range(len(correct))
        ]
    }


class StubCompletions:
    def __init__(self, contents=None, error=None):
        self.contents = list(contents or [])
        self.error = error
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        content = self.contents.pop(0)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def stub_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_strict_schema_closes_every_object():
    schema = strict_schema(QuestionBatch)

    assert schema["additionalProperties"] is False
    for definition in schema["$defs"].values():
        assert definition["additionalProperties"] is False


def test_build_questions_assigns_stable_ids():
    questions = build_questions(SEGMENT, QuestionBatch(**batch_payload(correct=(2, 0))))

    assert [question.id for question in questions] == ["job_segment_001_question_00", "job_segment_001_question_01"]
    assert [option.id for option in questions[0].options] == ["option_1", "option_2", "option_3", "option_4"]
    assert questions[0].options[2].is_correct
    assert all(question.segment_id == SEGMENT.id for question in questions)


def test_build_questions_rejects_two_correct_options():
    payload = batch_payload(correct=(0,))
    payload["questions"][0]["options"][1]["is_correct"] = True

    with pytest.raises(InvalidQuestion):
        build_questions(SEGMENT, QuestionBatch(**payload))


def test_executor_returns_validated_questions():
    completions = StubCompletions(contents=[json.dumps(batch_payload(correct=(1, 3, 0)))])
    executor = OpenAIQuestionExecutor(client=stub_client(completions), model="gpt-4o")

    result = asyncio.run(executor.run("job", SEGMENT))

    assert result.ok
    assert len(result.output) == 3
    request = completions.requests[0]
    assert request["model"] == "gpt-4o"
    assert request["response_format"]["json_schema"]["strict"] is True
    assert SEGMENT.text in request["messages"][0]["content"]


def test_empty_segment_skips_model_call():
    completions = StubCompletions()
    executor = OpenAIQuestionExecutor(client=stub_client(completions))
    silent = Segment(id="job_segment_002", job_id="job", index=2, text="   ")

    result = asyncio.run(executor.run("job", silent))

    assert result.ok
    assert result.output == []
    assert completions.requests == []


def test_unusable_model_output_is_retryable():
    completions = StubCompletions(contents=["not json"])
    executor = OpenAIQuestionExecutor(client=stub_client(completions))

    result = asyncio.run(executor.run("job", SEGMENT))

    assert not result.ok
    assert result.kind == "invalid_output"
    assert result.retryable is True


def test_rate_limit_is_retryable():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    error = openai.RateLimitError("slow down", response=httpx.Response(429, request=request), body=None)
    executor = OpenAIQuestionExecutor(client=stub_client(StubCompletions(error=error)))

    result = asyncio.run(executor.run("job", SEGMENT))

    assert not result.ok
    assert result.kind == "rate_limited"
    assert result.retryable is True


def test_openai_error_classification():
    request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")

    connection = classify_openai_error(openai.APIConnectionError(request=request), "Transcribing")
    assert isinstance(connection, TransientExecutorError)

    rejected = openai.BadRequestError("bad file", response=httpx.Response(400, request=request), body=None)
    assert isinstance(classify_openai_error(rejected, "Transcribing"), PermanentExecutorError)

    overloaded = openai.InternalServerError("overloaded", response=httpx.Response(503, request=request), body=None)
    assert isinstance(classify_openai_error(overloaded, "Transcribing"), TransientExecutorError)


def test_plan_chunks_covers_duration():
    assert plan_chunks(2500, 1200) == [(0.0, 1200), (1200.0, 1200), (2400.0, 100.0)]
    assert plan_chunks(0, 1200) == []
