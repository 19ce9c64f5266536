"""Exceptions raised by the tutoring core and mapped onto responses in main."""


class TutorError(Exception):
    """Base class for tutoring errors."""


class SessionNotFoundError(TutorError):
    """The session id is unknown or the session has expired."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found or expired: {session_id}")
        self.session_id = session_id


class SessionExistsError(TutorError):
    """A session with the same id is already stored."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session already exists: {session_id}")
        self.session_id = session_id


class SessionStoreError(TutorError):
    """The backing store could not persist a session."""


class GenerationFailure(TutorError):
    """The question generator produced no usable question."""


class EvaluationFailure(TutorError):
    """The answer evaluator produced no usable verdict."""
