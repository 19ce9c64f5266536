"""Question/answer tutoring core.

Exposes the session orchestrator and the two model roles it coordinates,
a question generator and an answer evaluator, which share one conversation
history per session.
"""

from .collaborators import AnswerEvaluator, CollaboratorResult, QuestionGenerator
from .service import QATutorService, get_tutor_service, set_tutor_service

__all__ = [
    "AnswerEvaluator",
    "CollaboratorResult",
    "QATutorService",
    "QuestionGenerator",
    "get_tutor_service",
    "set_tutor_service",
]
