import asyncio
import logging
import uuid
import weakref
from datetime import datetime, timezone
from typing import Callable

from ..errors import SessionExistsError
from ..models import (
    ANSWER_PREFIX,
    CONTEXT_PREFIX,
    DIFFERENT_QUESTION_PRIMER,
    FEEDBACK_PREFIX,
    FOLLOW_UP_PRIMER,
    AnswerResult,
    AnswerStatus,
    ConversationHistory,
    Session,
    StartResult,
)
from ..services.session_store import InMemorySessionStore, SessionStore
from ..settings import get_settings
from .collaborators import AnswerEvaluator, QuestionGenerator

logger = logging.getLogger(__name__)

SESSION_ID_ATTEMPTS = 3


def new_session_id() -> str:
    return f"qa_{uuid.uuid4().hex}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QATutorService:
    """Drives question/answer sessions between a learner and the two model roles.

    A session alternates between waiting for a first answer to its current
    question and waiting for a retry. A passing verdict moves on to a
    follow-up question; running out of attempts forces a different question.
    Either way the attempt counter goes back to zero.

    Answers for the same session are processed one at a time. Each answer is
    applied to a working copy of the session, and the store is only written
    once every model call for that answer has succeeded.
    """

    def __init__(
        self,
        store: SessionStore,
        question_generator: QuestionGenerator | None = None,
        evaluator: AnswerEvaluator | None = None,
        max_attempts: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.question_generator = question_generator or QuestionGenerator()
        self.evaluator = evaluator or AnswerEvaluator()
        self.max_attempts = max_attempts or get_settings().max_attempts
        self._clock = clock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def sweep(self) -> None:
        removed = await self.store.sweep_expired(self._clock())
        for session_id in removed:
            logger.debug("Session expired: %s", session_id)

    async def start(self, context: str) -> StartResult:
        """Open a session over ``context`` and ask its first question."""
        await self.sweep()

        history = ConversationHistory()
        history.add_user(f"{CONTEXT_PREFIX}{context}")
        generated = await self.question_generator.run(history)

        for attempt in range(1, SESSION_ID_ATTEMPTS + 1):
            session = Session(
                id=new_session_id(),
                context=context,
                current_question=generated.output,
                max_attempts=self.max_attempts,
                history=generated.history,
                created_at=self._clock(),
            )
            try:
                await self.store.create(session)
                break
            except SessionExistsError:
                logger.warning("Session id collision on attempt %d: %s", attempt, session.id)
                if attempt == SESSION_ID_ATTEMPTS:
                    raise

        logger.info("Session started: %s", session.id)
        return StartResult(
            session_id=session.id,
            question=session.current_question,
            max_attempts=session.max_attempts,
        )

    async def answer(self, session_id: str, answer: str) -> AnswerResult:
        """Evaluate ``answer`` against the session's current question."""
        await self.sweep()

        async with self._lock_for(session_id):
            session = (await self.store.get(session_id)).copy()

            session.record_attempt()
            session.history.add_user(f"{ANSWER_PREFIX}{answer}")

            evaluation = await self.evaluator.run(session.history)
            session.adopt_history(evaluation.history)
            verdict = evaluation.output
            logger.info(
                "Session %s attempt %d/%d scored %s",
                session.id,
                session.attempt_count,
                session.max_attempts,
                verdict.score,
            )

            if verdict.passed:
                question = await self._next_question(session, FOLLOW_UP_PRIMER)
                result = AnswerResult(
                    status=AnswerStatus.CORRECT,
                    feedback=verdict.feedback,
                    next_question=question,
                    attempt_count=session.attempt_count,
                    max_attempts=session.max_attempts,
                )
            elif session.attempts_exhausted:
                question = await self._next_question(session, DIFFERENT_QUESTION_PRIMER)
                result = AnswerResult(
                    status=AnswerStatus.MAX_ATTEMPTS,
                    feedback=(
                        f"{verdict.feedback}\n\n"
                        f"Maximum attempts reached. Here's a new question: {question}"
                    ),
                    next_question=question,
                    attempt_count=session.attempt_count,
                    max_attempts=session.max_attempts,
                )
            else:
                # Keeps the hint visible to the evaluator on the next attempt.
                session.history.add_user(f"{FEEDBACK_PREFIX}{verdict.feedback}")
                result = AnswerResult(
                    status=AnswerStatus.NEEDS_IMPROVEMENT,
                    feedback=verdict.feedback,
                    attempt_count=session.attempt_count,
                    max_attempts=session.max_attempts,
                )

            await self.store.put(session)
            return result

    async def _next_question(self, session: Session, primer: str) -> str:
        session.history.add_user(primer)
        generated = await self.question_generator.run(session.history)
        session.adopt_history(generated.history)
        session.install_question(generated.output)
        return generated.output


_SERVICE: QATutorService | None = None


def get_tutor_service() -> QATutorService:
    """Return the process-wide tutor service, creating an in-memory one if unset."""
    global _SERVICE
    if _SERVICE is None:
        settings = get_settings()
        _SERVICE = QATutorService(InMemorySessionStore(settings.session_retention_seconds))
    return _SERVICE


def set_tutor_service(service: QATutorService | None) -> None:
    global _SERVICE
    _SERVICE = service
