from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Literal

from pydantic import BaseModel, ConfigDict

CONTEXT_PREFIX = "Context: "
ANSWER_PREFIX = "Answer: "
FEEDBACK_PREFIX = "Feedback: "
FOLLOW_UP_PRIMER = "Generate a follow-up question."
DIFFERENT_QUESTION_PRIMER = "Generate a new question (different)."


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Score(str, Enum):
    PASS = "pass"
    NEEDS_IMPROVEMENT = "needs_improvement"


class AnswerStatus(str, Enum):
    CORRECT = "correct"
    NEEDS_IMPROVEMENT = "needs_improvement"
    MAX_ATTEMPTS = "max_attempts"


@dataclass(frozen=True)
class ConversationEntry:
    """One role-tagged message in a session's history."""

    role: Role
    content: str

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ConversationHistory:
    """Append-only, chronologically ordered log of conversation entries.

    Shared by the question generator and the evaluator: both derive all of
    their context from scanning it, so entries must be appended in the order
    the events happened. There is no way to remove or edit an entry.
    """

    def __init__(self, entries: Iterable[ConversationEntry] = ()) -> None:
        self._entries: List[ConversationEntry] = list(entries)

    def append(self, entry: ConversationEntry) -> None:
        self._entries.append(entry)

    def add_user(self, content: str) -> None:
        self.append(ConversationEntry(Role.USER, content))

    def extended(self, *entries: ConversationEntry) -> ConversationHistory:
        """Return a new history holding these entries followed by ``entries``."""
        return ConversationHistory([*self._entries, *entries])

    def copy(self) -> ConversationHistory:
        return ConversationHistory(self._entries)

    def to_messages(self) -> List[Dict[str, str]]:
        return [entry.to_message() for entry in self._entries]

    @classmethod
    def from_messages(cls, messages: Iterable[Dict[str, str]]) -> ConversationHistory:
        return cls(
            ConversationEntry(Role(m["role"]), str(m["content"])) for m in messages
        )

    @property
    def last(self) -> ConversationEntry | None:
        return self._entries[-1] if self._entries else None

    def __iter__(self) -> Iterator[ConversationEntry]:
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConversationHistory):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"ConversationHistory({len(self._entries)} entries)"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """One learner's question/answer progress over a context passage."""

    id: str
    context: str
    current_question: str
    max_attempts: int
    history: ConversationHistory = field(default_factory=ConversationHistory)
    attempt_count: int = 0
    created_at: datetime = field(default_factory=_utcnow)

    def copy(self) -> Session:
        """Working copy whose history can grow without touching this session."""
        clone = copy.copy(self)
        clone.history = self.history.copy()
        return clone

    def adopt_history(self, history: ConversationHistory) -> None:
        """Install a collaborator's transcript as the canonical history."""
        if len(history) < len(self.history):
            raise ValueError(
                f"History for session {self.id} cannot shrink "
                f"({len(self.history)} -> {len(history)} entries)"
            )
        self.history = history

    def install_question(self, question: str) -> None:
        self.current_question = question
        self.attempt_count = 0

    def record_attempt(self) -> None:
        self.attempt_count += 1

    @property
    def attempts_exhausted(self) -> bool:
        return self.attempt_count >= self.max_attempts

    def is_expired(self, now: datetime, retention_seconds: float) -> bool:
        return (now - self.created_at).total_seconds() > retention_seconds


class Verdict(BaseModel):
    """Structured result the evaluator must return."""

    model_config = ConfigDict(extra="ignore")

    feedback: str
    score: Literal["pass", "needs_improvement"]

    @property
    def passed(self) -> bool:
        return self.score == Score.PASS.value


@dataclass
class StartResult:
    session_id: str
    question: str
    max_attempts: int
    attempt_count: int = 0


@dataclass
class AnswerResult:
    status: AnswerStatus
    feedback: str
    attempt_count: int
    max_attempts: int
    next_question: str | None = None
