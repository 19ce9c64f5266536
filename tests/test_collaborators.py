from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from openai import OpenAIError

from qatutor.errors import EvaluationFailure, GenerationFailure
from qatutor.models import ConversationHistory, Role
from qatutor.tutor.collaborators import AnswerEvaluator, QuestionGenerator, clean_question


def _completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def mock_client() -> MagicMock:
    """Mock AsyncOpenAI client with an async chat.completions.create."""
    m = MagicMock()
    m.chat.completions.create = AsyncMock(return_value=_completion(""))
    return m


@pytest.fixture
def history() -> ConversationHistory:
    h = ConversationHistory()
    h.add_user("Context: Paris is the capital of France.")
    return h


@pytest.fixture
def graded_history(history: ConversationHistory) -> ConversationHistory:
    h = history.copy()
    h.add_user("What is the capital of France?")
    h.add_user("Answer: Paris")
    return h


def test_clean_question_strips_numbering_and_quotes() -> None:
    assert clean_question('  "1. What is the capital of France?"  ') == "What is the capital of France?"
    assert clean_question("- Which city?") == "Which city?"
    assert clean_question("   ") == ""


@pytest.mark.asyncio
async def test_question_generator_returns_question_and_transcript(
    mock_client: MagicMock, history: ConversationHistory
) -> None:
    """run sends system prompt + history and appends the reply to a new history."""
    mock_client.chat.completions.create.return_value = _completion(
        "What is the capital of France?\n"
    )
    generator = QuestionGenerator(client=mock_client, model="test-model")

    result = await generator.run(history)

    assert result.output == "What is the capital of France?"
    assert len(history) == 1
    assert len(result.history) == 2
    assert result.history.last.role == Role.ASSISTANT

    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["messages"][0] == {"role": "system", "content": generator.system_prompt}
    assert kwargs["messages"][1:] == history.to_messages()


@pytest.mark.asyncio
async def test_question_generator_empty_output(
    mock_client: MagicMock, history: ConversationHistory
) -> None:
    mock_client.chat.completions.create.return_value = _completion(None)
    generator = QuestionGenerator(client=mock_client, model="test-model")
    with pytest.raises(GenerationFailure):
        await generator.run(history)


@pytest.mark.asyncio
async def test_question_generator_wraps_api_errors(
    mock_client: MagicMock, history: ConversationHistory
) -> None:
    mock_client.chat.completions.create.side_effect = OpenAIError("boom")
    generator = QuestionGenerator(client=mock_client, model="test-model")
    with pytest.raises(GenerationFailure) as excinfo:
        await generator.run(history)
    assert isinstance(excinfo.value.__cause__, OpenAIError)


@pytest.mark.asyncio
async def test_evaluator_parses_verdict(
    mock_client: MagicMock, graded_history: ConversationHistory
) -> None:
    """run requests JSON output and validates it into a Verdict."""
    raw = '{"feedback": "Correct!", "score": "pass"}'
    mock_client.chat.completions.create.return_value = _completion(raw)
    evaluator = AnswerEvaluator(client=mock_client, model="test-model")

    result = await evaluator.run(graded_history)

    assert result.output.passed
    assert result.output.feedback == "Correct!"
    assert result.history.last.content == raw
    assert len(result.history) == len(graded_history) + 1
    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    [
        None,
        "   ",
        "The answer is right.",
        '{"feedback": "hm", "score": "partial"}',
        '{"feedback": "hm"}',
    ],
)
async def test_evaluator_rejects_unusable_output(
    mock_client: MagicMock, graded_history: ConversationHistory, content: str | None
) -> None:
    mock_client.chat.completions.create.return_value = _completion(content)
    evaluator = AnswerEvaluator(client=mock_client, model="test-model")
    with pytest.raises(EvaluationFailure):
        await evaluator.run(graded_history)


@pytest.mark.asyncio
async def test_evaluator_wraps_api_errors(
    mock_client: MagicMock, graded_history: ConversationHistory
) -> None:
    mock_client.chat.completions.create.side_effect = OpenAIError("timeout")
    evaluator = AnswerEvaluator(client=mock_client, model="test-model")
    with pytest.raises(EvaluationFailure):
        await evaluator.run(graded_history)


@pytest.mark.asyncio
async def test_evaluator_ignores_extra_keys_but_checks_score(
    mock_client: MagicMock, graded_history: ConversationHistory
) -> None:
    """An extra key still yields a verdict; an unknown score still fails."""
    mock_client.chat.completions.create.return_value = _completion(
        '{"feedback": "Correct!", "score": "pass", "reasoning": "Paris is named."}'
    )
    evaluator = AnswerEvaluator(client=mock_client, model="test-model")

    result = await evaluator.run(graded_history)
    assert result.output.passed
    assert result.output.feedback == "Correct!"

    mock_client.chat.completions.create.return_value = _completion(
        '{"feedback": "Close.", "score": "almost", "reasoning": "partial"}'
    )
    with pytest.raises(EvaluationFailure):
        await evaluator.run(graded_history)
