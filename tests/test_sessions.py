# tests/test_sessions.py
from unittest.mock import MagicMock

import pytest
import redis

from clinic.sessions import InMemorySessionStore, RedisSessionStore, SessionStoreUnavailable, UserSession, build_session_store


def test_in_memory_store_returns_copies():
    store = InMemorySessionStore()
    session = store.create()
    fetched = store.get(session.session_id)
    fetched.username = "mutated"
    assert store.get(session.session_id).username is None


def test_in_memory_regenerate_moves_data():
    store = InMemorySessionStore()
    session = store.create().model_copy(update={"authenticated": True, "username": "admin"})
    fresh = store.regenerate(session)

    assert fresh.session_id != session.session_id
    assert store.get(session.session_id) is None
    assert store.get(fresh.session_id).username == "admin"


def test_get_without_id():
    assert InMemorySessionStore().get(None) is None


def test_redis_store_serialises_with_ttl():
    client = MagicMock()
    store = RedisSessionStore(client, ttl_seconds=900)
    session = UserSession(session_id="abc", authenticated=True, username="admin")

    store.save(session)

    key, ttl, payload = client.setex.call_args.args
    assert key == "session:abc"
    assert ttl == 1800
    client.get.return_value = payload
    assert store.get("abc") == session


def test_redis_store_missing_key():
    client = MagicMock()
    client.get.return_value = None
    assert RedisSessionStore(client, ttl_seconds=900).get("nope") is None


def test_redis_errors_are_wrapped():
    client = MagicMock()
    client.get.side_effect = redis.ConnectionError("down")
    with pytest.raises(SessionStoreUnavailable):
        RedisSessionStore(client, ttl_seconds=900).get("abc")


def test_build_store_picks_memory_without_redis(settings):
    store = build_session_store(settings)
    assert isinstance(store, InMemorySessionStore)
    assert store.ttl_seconds == settings.session_timeout_seconds


def test_build_store_picks_redis_when_configured(settings):
    configured = settings.model_copy(update={"redis_url": "redis://localhost:6379/0"})
    assert isinstance(build_session_store(configured), RedisSessionStore)


class FakeTimer:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_in_memory_entries_expire_after_twice_the_timeout():
    timer = FakeTimer()
    store = InMemorySessionStore(ttl_seconds=900, timer=timer)
    session = store.create()

    timer.now += 1799
    assert store.get(session.session_id) is not None
    timer.now += 1
    assert store.get(session.session_id) is None


def test_abandoned_sessions_are_swept_on_write():
    timer = FakeTimer()
    store = InMemorySessionStore(ttl_seconds=900, timer=timer)
    abandoned = store.create()
    timer.now += 1000
    active = store.create()
    timer.now += 1000

    store.create()

    assert abandoned.session_id not in store._sessions
    assert active.session_id in store._sessions


def test_save_extends_expiry():
    timer = FakeTimer()
    store = InMemorySessionStore(ttl_seconds=900, timer=timer)
    session = store.create()
    timer.now += 1500
    store.save(session)
    timer.now += 1500
    assert store.get(session.session_id) is not None


def test_without_ttl_entries_never_expire():
    timer = FakeTimer()
    store = InMemorySessionStore(timer=timer)
    session = store.create()
    timer.now += 10**9
    assert store.get(session.session_id) is not None
