import asyncio
import itertools
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.exists() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from qatutor.models import ConversationEntry, ConversationHistory, Role, Verdict  # noqa: E402
from qatutor.services.session_store import InMemorySessionStore  # noqa: E402
from qatutor.tutor.collaborators import (  # noqa: E402
    AnswerEvaluator,
    CollaboratorResult,
    QuestionGenerator,
)
from qatutor.tutor.service import QATutorService  # noqa: E402


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _reply(history: ConversationHistory, output, raw: str) -> CollaboratorResult:
    return CollaboratorResult(
        output=output,
        history=history.extended(ConversationEntry(Role.ASSISTANT, raw)),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def question_generator() -> MagicMock:
    """Generator stub returning "Question 1?", "Question 2?", ... in call order."""
    counter = itertools.count(1)

    async def run(history: ConversationHistory) -> CollaboratorResult:
        question = f"Question {next(counter)}?"
        return _reply(history, question, question)

    m = MagicMock(spec=QuestionGenerator)
    m.run = AsyncMock(side_effect=run)
    return m


@pytest.fixture
def scores() -> List[str]:
    """Scores the evaluator stub hands out in order; defaults to needs_improvement."""
    return []


@pytest.fixture
def evaluator(scores: List[str]) -> MagicMock:
    """Evaluator stub that yields to the event loop before answering."""

    async def run(history: ConversationHistory) -> CollaboratorResult:
        await asyncio.sleep(0)
        score = scores.pop(0) if scores else "needs_improvement"
        feedback = "Correct!" if score == "pass" else "Not quite, look at the passage again."
        verdict = Verdict(feedback=feedback, score=score)
        return _reply(history, verdict, verdict.model_dump_json())

    m = MagicMock(spec=AnswerEvaluator)
    m.run = AsyncMock(side_effect=run)
    return m


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore(retention_seconds=3600)


@pytest.fixture
def service(
    store: InMemorySessionStore,
    question_generator: MagicMock,
    evaluator: MagicMock,
    clock: FakeClock,
) -> QATutorService:
    return QATutorService(
        store,
        question_generator=question_generator,
        evaluator=evaluator,
        max_attempts=5,
        clock=clock,
    )
