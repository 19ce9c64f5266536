import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, TypeVar

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from ..errors import EvaluationFailure, GenerationFailure
from ..models import ConversationEntry, ConversationHistory, Role, Verdict
from ..settings import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ENUMERATION = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s+")


@dataclass
class CollaboratorResult(Generic[T]):
    """Output of a model call plus the transcript that produced it.

    ``history`` is the input history extended with the model's reply and
    supersedes the history the caller passed in.
    """

    output: T
    history: ConversationHistory


def _make_client() -> AsyncOpenAI:
    settings = get_settings()
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.request_timeout_seconds,
    )


class Collaborator:
    """A chat model invoked with a fixed instruction profile and a history."""

    name = "collaborator"

    def __init__(
        self,
        system_prompt: str,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
        temperature: float | None = None,
    ) -> None:
        settings = get_settings()
        self.system_prompt = system_prompt
        self.model = model or settings.model
        self.temperature = settings.temperature if temperature is None else temperature
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # Created lazily; constructing a collaborator needs no API key.
        if self._client is None:
            self._client = _make_client()
        return self._client

    def _messages(self, history: ConversationHistory) -> List[Dict[str, str]]:
        return [{"role": "system", "content": self.system_prompt}, *history.to_messages()]

    async def _complete(self, history: ConversationHistory, **kwargs: Any) -> str:
        logger.debug("Calling %s with %d history entries", self.name, len(history))
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=self._messages(history),
            temperature=self.temperature,
            **kwargs,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


def clean_question(text: str) -> str:
    """Normalize generator output to a bare question sentence."""
    question = text.strip().strip('"').strip()
    return _ENUMERATION.sub("", question, count=1).strip()


class QuestionGenerator(Collaborator):
    """Produces exactly one question from the context and prior exchanges."""

    name = "question_generator"

    def __init__(self, client: AsyncOpenAI | None = None, **kwargs: Any) -> None:
        super().__init__(get_settings().question_generator_system_prompt, client, **kwargs)

    async def run(self, history: ConversationHistory) -> CollaboratorResult[str]:
        try:
            raw = await self._complete(history)
        except OpenAIError as e:
            logger.exception("Question generation request failed: %s", e)
            raise GenerationFailure(f"Question generator call failed: {e}") from e

        question = clean_question(raw)
        if not question:
            raise GenerationFailure("Question generator returned no question")

        return CollaboratorResult(
            output=question,
            history=history.extended(ConversationEntry(Role.ASSISTANT, raw.strip())),
        )


class AnswerEvaluator(Collaborator):
    """Grades the most recent answer in the history against context and question."""

    name = "evaluator"

    def __init__(self, client: AsyncOpenAI | None = None, **kwargs: Any) -> None:
        super().__init__(get_settings().evaluator_system_prompt, client, **kwargs)

    async def run(self, history: ConversationHistory) -> CollaboratorResult[Verdict]:
        try:
            raw = await self._complete(history, response_format={"type": "json_object"})
        except OpenAIError as e:
            logger.exception("Evaluation request failed: %s", e)
            raise EvaluationFailure(f"Evaluator call failed: {e}") from e

        if not raw.strip():
            raise EvaluationFailure("Evaluator returned no result")
        try:
            verdict = Verdict.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Evaluator result does not match schema: %s", e)
            raise EvaluationFailure("Evaluator returned a malformed verdict") from e

        return CollaboratorResult(
            output=verdict,
            history=history.extended(ConversationEntry(Role.ASSISTANT, raw.strip())),
        )
