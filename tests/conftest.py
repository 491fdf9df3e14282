import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure project root on sys.path so 'campaign_dispatch' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from campaign_dispatch.main import app  # type: ignore
from campaign_dispatch.database import Base  # type: ignore
from campaign_dispatch.config import SEND_AUTH, TRIGGER_AUTH  # type: ignore
"""Pytest fixtures and factories.

All model modules are imported before ``Base.metadata.create_all()`` so every
table is registered on the metadata.
"""
from campaign_dispatch.models.db import (
    CampaignJob, ConsentRecord, SuppressionEntry, JobStatus, SuppressionReason,
)
from campaign_dispatch.jobs.backoff_scheduler import BackoffScheduler
from campaign_dispatch.jobs.job_store import JobStore
from campaign_dispatch.services.consent_resolver import ConsentResolver
from campaign_dispatch.services.dedup_guard import SqlDedupGuard
from campaign_dispatch.services.dispatch_chunker import DispatchChunker
from campaign_dispatch.services.mail_sender import SendResult
from campaign_dispatch.services.runtime import build_runtime
from campaign_dispatch.services.suppression_cache import SuppressionCache
from campaign_dispatch.services.tick_coordinator import TickCoordinator
from campaign_dispatch.services.trigger_auth import sign_request

CRON_KEY = "test-cron-key"
CRON_SECRET = "test-cron-secret"
SEND_SECRET = "test-send-secret"
T0 = datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)

# Single shared in-memory connection; the engine runs in one thread per test
engine = create_engine(
    "sqlite+pysqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def epoch_ms(self) -> int:
        return int(self.now.timestamp() * 1000)


class FakeMailSender:
    """Records deliveries; addresses in ``fail_for`` (or everything when
    ``fail_all``) come back as failed sends."""

    def __init__(self):
        self.sent: list[dict] = []
        self.calls = 0
        self.fail_for: set[str] = set()
        self.fail_all = False

    async def send(self, to, subject, html, headers=None):
        self.calls += 1
        if self.fail_all or to in self.fail_for:
            return SendResult(ok=False, error="provider_rejected")
        self.sent.append({"to": to, "subject": subject, "html": html, "headers": dict(headers or {})})
        return SendResult(ok=True, message_id=f"msg-{len(self.sent)}")

    @property
    def recipients(self) -> list[str]:
        return [m["to"] for m in self.sent]


@pytest.fixture(autouse=True)
def _fresh_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock():
    return FrozenClock()


@pytest.fixture()
def sender():
    return FakeMailSender()


@pytest.fixture()
def store(clock):
    return JobStore(TestingSessionLocal, clock=clock)


@pytest.fixture()
def dedup(clock):
    return SqlDedupGuard(TestingSessionLocal, clock=clock)


@pytest.fixture()
def auth_settings(monkeypatch):
    monkeypatch.setitem(TRIGGER_AUTH, "cron_key", CRON_KEY)
    monkeypatch.setitem(TRIGGER_AUTH, "hmac_secret", CRON_SECRET)
    monkeypatch.setitem(TRIGGER_AUTH, "allowed_ips", [])
    monkeypatch.setitem(SEND_AUTH, "hmac_secret", SEND_SECRET)


@pytest.fixture()
def runtime(auth_settings, sender, dedup, clock):
    return build_runtime(TestingSessionLocal, sender=sender, dedup=dedup, clock=clock)


@pytest.fixture()
def session_factory():
    return TestingSessionLocal


@pytest.fixture()
def coordinator_factory(store, dedup, sender, clock):
    """Tick coordinator wired to the test database with tunable chunking."""
    def _build(*, max_chunks: int = 10, chunk_size: int = 200, concurrency: int = 8, checkpoint_every: int = 25, notifier=None, max_jobs: int = 8) -> TickCoordinator:
        suppression = SuppressionCache(TestingSessionLocal, clock=clock)
        chunker = DispatchChunker(
            store,
            dedup,
            sender,
            suppression,
            chunk_size=chunk_size,
            concurrency=concurrency,
            checkpoint_every=checkpoint_every,
            rate_delay_ms=0,
            clock=clock,
        )
        return TickCoordinator(
            store=store,
            resolver=ConsentResolver(suppression, TestingSessionLocal, test_recipients=["qa@example.com"]),
            chunker=chunker,
            scheduler=BackoffScheduler(store, notifier=notifier, clock=clock),
            max_jobs=max_jobs,
            max_chunks=max_chunks,
            clock=clock,
        )
    return _build


@pytest.fixture()
def client(runtime):
    """The production app builds the runtime in lifespan; tests bypass lifespan
    and attach the test runtime directly."""
    app.state.dispatch = runtime  # type: ignore[attr-defined]
    yield TestClient(app)
    del app.state.dispatch


@pytest.fixture()
def cron_headers(clock):
    def _build(path: str = "/marketing/cron-send", body: bytes = b"{}", *, ts_ms: Optional[int] = None, key: str = CRON_KEY):
        ts_ms = ts_ms if ts_ms is not None else clock.epoch_ms()
        return {
            "content-type": "application/json",
            "x-cron-key": key,
            "x-cron-ts": str(ts_ms),
            "x-cron-sig": sign_request(CRON_SECRET, method="POST", path=path, body=body, ts_ms=ts_ms),
            "x-request-id": str(uuid.uuid4()),
        }
    return _build


# ---------- Data factory helpers ----------

@pytest.fixture()
def job_factory(db_session, clock):
    def _create(job_id: Optional[str] = None, **overrides) -> CampaignJob:
        fields = dict(
            id=job_id or f"job-{uuid.uuid4().hex[:10]}",
            subject="Weekly digest",
            html_body="<p>Hello</p>",
            topic_filter={},
            test_only=False,
            only_commercial=False,
            status=JobStatus.PENDING,
            scheduled_at=clock() - timedelta(minutes=1),
            attempts=0,
            version=0,
        )
        fields.update(overrides)
        job = CampaignJob(**fields)
        db_session.add(job)
        db_session.commit()
        db_session.refresh(job)
        return job
    return _create


@pytest.fixture()
def consent_factory(db_session):
    def _create(email: str, *, marketing: bool = True, comercial: bool = False, topics: Optional[dict] = None) -> ConsentRecord:
        record = ConsentRecord(
            email=email.strip().lower(),
            consent_marketing=marketing,
            consent_comercial=comercial,
            topics=topics or {},
        )
        db_session.add(record)
        db_session.commit()
        return record
    return _create


@pytest.fixture()
def audience_factory(consent_factory):
    """``n`` consenting addresses, returned in resolver (sorted) order."""
    def _create(n: int, *, domain: str = "example.com") -> list[str]:
        emails = [f"user{i:04d}@{domain}" for i in range(n)]
        for email in emails:
            consent_factory(email)
        return sorted(emails)
    return _create


@pytest.fixture()
def suppression_factory(db_session):
    def _create(email: str, reason: SuppressionReason = SuppressionReason.UNSUBSCRIBED) -> SuppressionEntry:
        entry = SuppressionEntry(email=email.strip().lower(), reason=reason)
        db_session.add(entry)
        db_session.commit()
        return entry
    return _create
