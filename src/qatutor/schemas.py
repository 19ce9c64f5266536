"""Wire models for the question/answer endpoint (camelCase JSON)."""

from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .models import AnswerResult, StartResult


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QARequest(_CamelModel):
    action: Literal["start", "answer"]
    session_id: str | None = None
    context: str | None = None
    answer: str | None = None


class StartResponse(_CamelModel):
    success: bool = True
    session_id: str
    question: str
    attempt_count: int
    max_attempts: int

    @classmethod
    def from_result(cls, result: StartResult) -> "StartResponse":
        return cls(
            session_id=result.session_id,
            question=result.question,
            attempt_count=result.attempt_count,
            max_attempts=result.max_attempts,
        )


class AnswerResponse(_CamelModel):
    success: bool = True
    status: Literal["correct", "needs_improvement", "max_attempts"]
    feedback: str
    next_question: str | None = None
    attempt_count: int
    max_attempts: int

    @classmethod
    def from_result(cls, result: AnswerResult) -> "AnswerResponse":
        return cls(
            status=result.status.value,
            feedback=result.feedback,
            next_question=result.next_question,
            attempt_count=result.attempt_count,
            max_attempts=result.max_attempts,
        )
