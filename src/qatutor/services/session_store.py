import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..errors import SessionExistsError, SessionNotFoundError, SessionStoreError
from ..models import ConversationHistory, Session
from ..settings import get_settings
from .redis import RedisCrudService, get_redis_crud_service

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "qa_session:"


class SessionStore(ABC):
    """Keyed lookup and lifecycle of sessions, with age-based expiry."""

    def __init__(self, retention_seconds: int) -> None:
        self.retention_seconds = retention_seconds

    @abstractmethod
    async def create(self, session: Session) -> None:
        """Insert a new session. Raises SessionExistsError if the id is taken."""

    @abstractmethod
    async def get(self, session_id: str) -> Session:
        """Return the session. Raises SessionNotFoundError if absent or expired."""

    @abstractmethod
    async def put(self, session: Session) -> None:
        """Overwrite the stored session with this one. Raises SessionNotFoundError if the in-memory id is gone."""

    @abstractmethod
    async def sweep_expired(
        self, now: datetime, retention_seconds: float | None = None
    ) -> List[str]:
        """Remove sessions created more than the retention window before now.

        Uses the store's own retention unless one is given. Returns removed ids.
        """

    async def close(self) -> None:
        return None


class InMemorySessionStore(SessionStore):
    """Process-local store; everything is lost on restart.

    Expiry is opportunistic: nothing runs in the background, sweeps happen
    when callers ask for one (the tutor service does so on every request).
    """

    def __init__(self, retention_seconds: int) -> None:
        super().__init__(retention_seconds)
        self._sessions: Dict[str, Session] = {}

    async def create(self, session: Session) -> None:
        if session.id in self._sessions:
            raise SessionExistsError(session.id)
        self._sessions[session.id] = session

    async def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def put(self, session: Session) -> None:
        # A session swept while its answer was in flight stays gone.
        if session.id not in self._sessions:
            raise SessionNotFoundError(session.id)
        self._sessions[session.id] = session

    async def sweep_expired(
        self, now: datetime, retention_seconds: float | None = None
    ) -> List[str]:
        if retention_seconds is None:
            retention_seconds = self.retention_seconds
        expired = [
            sid
            for sid, session in self._sessions.items()
            if session.is_expired(now, retention_seconds)
        ]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Swept %d expired session(s)", len(expired))
        return expired

    def __len__(self) -> int:
        return len(self._sessions)


def _session_to_dict(session: Session) -> Dict[str, Any]:
    """Serialize Session to a JSON-serializable dict."""
    return {
        "id": session.id,
        "context": session.context,
        "history": session.history.to_messages(),
        "current_question": session.current_question,
        "attempt_count": session.attempt_count,
        "max_attempts": session.max_attempts,
        "created_at": session.created_at.isoformat(),
    }


def _dict_to_session(data: Dict[str, Any]) -> Session:
    """Build Session from a dict (e.g. from Redis)."""
    return Session(
        id=data["id"],
        context=data["context"],
        history=ConversationHistory.from_messages(data.get("history", [])),
        current_question=data["current_question"],
        attempt_count=int(data.get("attempt_count", 0)),
        max_attempts=int(data["max_attempts"]),
        created_at=datetime.fromisoformat(data["created_at"]),
    )


class RedisSessionStore(SessionStore):
    """Sessions kept in Redis as JSON, expiring at created_at + retention.

    The expiry is absolute, so writes never extend a session's lifetime.
    Redis removes expired keys by itself, which makes sweep_expired a no-op.
    """

    def __init__(self, redis_crud: RedisCrudService, retention_seconds: int) -> None:
        super().__init__(retention_seconds)
        self._redis = redis_crud

    def _key(self, session_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}{session_id}"

    def _expire_at(self, session: Session) -> datetime:
        return session.created_at + timedelta(seconds=self.retention_seconds)

    def _dump(self, session: Session) -> str:
        try:
            return json.dumps(_session_to_dict(session))
        except (TypeError, ValueError) as e:
            raise SessionStoreError(f"Cannot serialize session {session.id}: {e}") from e

    async def create(self, session: Session) -> None:
        key = self._key(session.id)
        written = await self._redis.set_if_absent(
            key, self._dump(session), expire_at=self._expire_at(session)
        )
        if written:
            return
        if await self._redis.exists(key):
            raise SessionExistsError(session.id)
        raise SessionStoreError(f"Could not store session {session.id}")

    async def get(self, session_id: str) -> Session:
        raw = await self._redis.get(self._key(session_id))
        if raw is None:
            raise SessionNotFoundError(session_id)
        try:
            return _dict_to_session(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Invalid session data for %s: %s", session_id, e)
            raise SessionNotFoundError(session_id) from e

    async def put(self, session: Session) -> None:
        ok = await self._redis.set(
            self._key(session.id),
            self._dump(session),
            expire_at=self._expire_at(session),
        )
        if not ok:
            raise SessionStoreError(f"Could not store session {session.id}")

    async def sweep_expired(
        self, now: datetime, retention_seconds: float | None = None
    ) -> List[str]:
        return []

    async def close(self) -> None:
        await self._redis.close()


_session_store_instance: SessionStore | None = None


async def get_session_store_async() -> SessionStore:
    """Return the session store, connecting to Redis when configured. Cached.

    Falls back to the in-memory store if Redis is not configured or unreachable.
    """
    global _session_store_instance
    if _session_store_instance is not None:
        return _session_store_instance

    settings = get_settings()
    retention = settings.session_retention_seconds
    redis_crud = get_redis_crud_service()
    if redis_crud is not None:
        try:
            await redis_crud.connect()
            _session_store_instance = RedisSessionStore(redis_crud, retention)
            return _session_store_instance
        except (RedisConnectionError, RedisTimeoutError, ConnectionError, TimeoutError) as e:
            logger.warning("Redis unavailable, keeping sessions in memory: %s", e)

    _session_store_instance = InMemorySessionStore(retention)
    return _session_store_instance


async def close_session_store() -> None:
    """Close the session store. Idempotent."""
    global _session_store_instance
    if _session_store_instance is not None:
        await _session_store_instance.close()
        _session_store_instance = None
        logger.debug("Session store closed")
