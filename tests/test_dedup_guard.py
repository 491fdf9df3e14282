from unittest.mock import MagicMock

import redis

from campaign_dispatch.config import DEDUP_SETTINGS
from campaign_dispatch.services import dedup_guard as dedup_module
from campaign_dispatch.services.dedup_guard import RedisDedupGuard, ReserveOutcome, SqlDedupGuard, create_dedup_guard


def test_sql_reservation_lifecycle(dedup):
    assert dedup.reserve("job-1", "a@x.com") is ReserveOutcome.RESERVED
    assert dedup.reserve("job-1", "A@X.com ") is ReserveOutcome.IN_FLIGHT

    dedup.mark_sent("job-1", "a@x.com")
    assert dedup.reserve("job-1", "a@x.com") is ReserveOutcome.ALREADY_SENT

    # Sent reservations survive a release
    dedup.release("job-1", "a@x.com")
    assert dedup.reserve("job-1", "a@x.com") is ReserveOutcome.ALREADY_SENT


def test_sql_release_frees_pending_reservation(dedup):
    dedup.reserve("job-1", "b@x.com")
    dedup.release("job-1", "b@x.com")
    assert dedup.reserve("job-1", "b@x.com") is ReserveOutcome.RESERVED


def test_reservations_are_scoped_per_job(dedup):
    dedup.reserve("job-1", "c@x.com")
    assert dedup.reserve("job-2", "c@x.com") is ReserveOutcome.RESERVED


class FakeRedis:
    def __init__(self):
        self.store = {}

    def set(self, key, value, nx=False):
        if nx and key in self.store:
            return None
        self.store[key] = value.encode("utf-8")
        return True

    def get(self, key):
        return self.store.get(key)

    def delete(self, key):
        self.store.pop(key, None)

    def ping(self):
        return True


def test_redis_reservation_lifecycle():
    client = FakeRedis()
    guard = RedisDedupGuard(client, key_prefix="t")

    assert guard.reserve("job-1", "a@x.com") is ReserveOutcome.RESERVED
    assert guard.reserve("job-1", "a@x.com") is ReserveOutcome.IN_FLIGHT
    guard.release("job-1", "a@x.com")
    assert guard.reserve("job-1", "a@x.com") is ReserveOutcome.RESERVED

    guard.mark_sent("job-1", "a@x.com")
    guard.release("job-1", "a@x.com")
    assert guard.reserve("job-1", "a@x.com") is ReserveOutcome.ALREADY_SENT
    assert all(key.startswith("t:job-1:") for key in client.store)
    assert "a@x.com" not in "".join(client.store)


def test_factory_prefers_reachable_redis(monkeypatch, session_factory):
    client = MagicMock()
    client.ping.return_value = True
    monkeypatch.setitem(DEDUP_SETTINGS, "backend", "redis")
    monkeypatch.setattr(dedup_module.redis, "from_url", lambda url, **kwargs: client)

    assert isinstance(create_dedup_guard(session_factory), RedisDedupGuard)


def test_factory_falls_back_to_sql(monkeypatch, session_factory):
    client = MagicMock()
    client.ping.side_effect = redis.ConnectionError("refused")
    monkeypatch.setitem(DEDUP_SETTINGS, "backend", "redis")
    monkeypatch.setattr(dedup_module.redis, "from_url", lambda url, **kwargs: client)

    assert isinstance(create_dedup_guard(session_factory), SqlDedupGuard)


def test_factory_defaults_to_sql(monkeypatch, session_factory):
    monkeypatch.setitem(DEDUP_SETTINGS, "backend", "sql")
    assert isinstance(create_dedup_guard(session_factory), SqlDedupGuard)
