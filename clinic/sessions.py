# clinic/sessions.py - server-side session state
import logging
import secrets
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Optional

import redis
from pydantic import BaseModel

from .config import Settings

logger = logging.getLogger(__name__)


class SessionStoreUnavailable(Exception):
    """The backing session store could not be reached."""


class UserSession(BaseModel):
    session_id: str
    authenticated: bool = False
    user_id: Optional[int] = None
    username: Optional[str] = None
    role: Optional[str] = None
    login_time: Optional[datetime] = None
    last_activity: Optional[datetime] = None


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class InMemorySessionStore:
    """Process-local session store.

    With ``ttl_seconds`` set, entries untouched for twice that long are
    evicted, like the Redis store's key expiry. Expired entries are swept on
    every write.
    """

    def __init__(self, ttl_seconds: Optional[int] = None, timer: Callable[[], float] = time.monotonic):
        self._sessions: Dict[str, UserSession] = {}
        self._expires: Dict[str, float] = {}
        self._lock = threading.Lock()
        self.ttl_seconds = ttl_seconds
        self.timer = timer

    def _put(self, session: UserSession) -> None:
        self._sessions[session.session_id] = session.model_copy()
        if self.ttl_seconds:
            self._expires[session.session_id] = self.timer() + self.ttl_seconds * 2

    def _drop(self, session_id: Optional[str]) -> None:
        self._sessions.pop(session_id, None)
        self._expires.pop(session_id, None)

    def _sweep(self) -> None:
        now = self.timer()
        for session_id in [sid for sid, deadline in self._expires.items() if deadline <= now]:
            self._drop(session_id)

    def create(self) -> UserSession:
        session = UserSession(session_id=new_session_id())
        self.save(session)
        return session

    def get(self, session_id: Optional[str]) -> Optional[UserSession]:
        if not session_id:
            return None
        with self._lock:
            deadline = self._expires.get(session_id)
            if deadline is not None and deadline <= self.timer():
                self._drop(session_id)
                return None
            session = self._sessions.get(session_id)
            return session.model_copy() if session else None

    def save(self, session: UserSession) -> None:
        with self._lock:
            self._sweep()
            self._put(session)

    def destroy(self, session_id: Optional[str]) -> None:
        with self._lock:
            self._drop(session_id)

    def regenerate(self, session: UserSession) -> UserSession:
        """Move the session's data under a fresh id and drop the old one."""
        fresh = session.model_copy(update={"session_id": new_session_id()})
        with self._lock:
            self._drop(session.session_id)
            self._sweep()
            self._put(fresh)
        return fresh


class RedisSessionStore:
    """Session store backed by Redis; entries expire with the inactivity timeout."""

    def __init__(self, client: redis.Redis, ttl_seconds: int, prefix: str = "session:"):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

    def create(self) -> UserSession:
        session = UserSession(session_id=new_session_id())
        self.save(session)
        return session

    def get(self, session_id: Optional[str]) -> Optional[UserSession]:
        if not session_id:
            return None
        try:
            payload = self.client.get(self._key(session_id))
        except redis.RedisError as e:
            logger.error(f"Redis session read failed: {e}")
            raise SessionStoreUnavailable(str(e)) from e
        if not payload:
            return None
        return UserSession.model_validate_json(payload)

    def save(self, session: UserSession) -> None:
        # The guard decides timeouts; the TTL only evicts abandoned sessions
        try:
            self.client.setex(self._key(session.session_id), self.ttl_seconds * 2, session.model_dump_json())
        except redis.RedisError as e:
            logger.error(f"Redis session write failed: {e}")
            raise SessionStoreUnavailable(str(e)) from e

    def destroy(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        try:
            self.client.delete(self._key(session_id))
        except redis.RedisError as e:
            logger.error(f"Redis session delete failed: {e}")
            raise SessionStoreUnavailable(str(e)) from e

    def regenerate(self, session: UserSession) -> UserSession:
        fresh = session.model_copy(update={"session_id": new_session_id()})
        try:
            pipe = self.client.pipeline()
            pipe.delete(self._key(session.session_id))
            pipe.setex(self._key(fresh.session_id), self.ttl_seconds * 2, fresh.model_dump_json())
            pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Redis session regenerate failed: {e}")
            raise SessionStoreUnavailable(str(e)) from e
        return fresh


def build_session_store(settings: Settings):
    if settings.redis_enabled:
        logger.info("Using Redis session store")
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return RedisSessionStore(client, settings.session_timeout_seconds)
    logger.info("Redis not configured, using in-memory session store")
    return InMemorySessionStore(ttl_seconds=settings.session_timeout_seconds)
