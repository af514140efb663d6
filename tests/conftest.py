"""
Test configuration and fixtures for ERP Mirror
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from typing import Generator

import pytest
from sqlalchemy import event
from sqlalchemy.orm import sessionmaker, Session

from erp_mirror.cache.token_store import MemoryTokenStore
from erp_mirror.connectors.sankhya import RecordsPage
from erp_mirror.contracts import get_contract
from erp_mirror.database import Base, build_engine, init_db
from erp_mirror.models import Contract
from erp_mirror.models.contract import AUTH_LEGACY, AUTH_OAUTH2


# =============================================================================
# Clock / sleep doubles
# =============================================================================

class FakeClock:
    """Epoch-seconds clock whose ``sleep`` advances time instead of blocking."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class SleepRecorder:
    """Records requested delays without waiting."""

    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()


# =============================================================================
# Test Database Setup
# =============================================================================

@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine (one connection per session, savepoints enabled)"""
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(engine, "connect")
    def _wal(dbapi_connection, connection_record):
        dbapi_connection.execute("PRAGMA journal_mode=WAL")

    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Session for assertions; tests end its transaction before running code under test"""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def make_contract(session_factory):
    """Factory: persist a contract and return its id."""

    def _make(**overrides) -> int:
        values = dict(
            name="Acme Distribuidora",
            tax_id="12345678000190",
            active=True,
            is_sandbox=True,
            auth_type=AUTH_LEGACY,
            integration_token="int-token",
            app_key="app-key",
            username="api@acme.test",
            password="secret",
            sync_enabled=True,
            sync_interval_minutes=120,
        )
        values.update(overrides)
        db = session_factory()
        try:
            c = Contract(**values)
            db.add(c)
            db.commit()
            return c.id
        finally:
            db.close()

    return _make


@pytest.fixture
def contract_id(make_contract) -> int:
    return make_contract()


@pytest.fixture
def oauth_contract_id(make_contract) -> int:
    return make_contract(
        name="Beta Comercio",
        auth_type=AUTH_OAUTH2,
        integration_token=None,
        app_key=None,
        username=None,
        password=None,
        oauth_client_id="client-id",
        oauth_client_secret="client-secret",
        oauth_x_token="x-token",
    )


@pytest.fixture
def contract_loader(session_factory):
    """Detached-contract loader bound to the test database."""

    def _load(tenant_id: int) -> Contract:
        db = session_factory()
        try:
            c = get_contract(db, tenant_id)
            db.expunge(c)
            return c
        finally:
            db.close()

    return _load


# =============================================================================
# ERP doubles
# =============================================================================

class FakeErpClient:
    """
    Scripted stand-in for SankhyaClient.

    ``datasets`` maps entity name to its full row list, served ``page_size`` rows
    per page. ``failures`` holds (entity, page, exception) entries, each raised
    once on the first matching request.
    """

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.datasets: dict[str, list[dict]] = {}
        self.failures: list[tuple[str, int, Exception]] = []
        self.auth_calls: list[int] = []
        self.load_calls: list[tuple[str, int, str]] = []

    def authenticate(self, contract) -> str:
        self.auth_calls.append(contract.id)
        return f"token-{contract.id}-{len(self.auth_calls)}"

    def load_records(self, token, is_sandbox, entity, fields, page) -> RecordsPage:
        self.load_calls.append((entity, page, token))
        for i, (failing_entity, failing_page, exc) in enumerate(self.failures):
            if failing_entity == entity and failing_page == page:
                del self.failures[i]
                raise exc
        rows = self.datasets.get(entity, [])
        start = page * self.page_size
        chunk = rows[start:start + self.page_size]
        return RecordsPage(rows=[dict(r) for r in chunk], has_more=start + self.page_size < len(rows))


@pytest.fixture
def fake_client() -> FakeErpClient:
    return FakeErpClient()


@pytest.fixture
def token_store(fake_clock) -> MemoryTokenStore:
    return MemoryTokenStore(clock=fake_clock)


def partner_rows(*codes: int) -> list[dict]:
    return [
        {"CODPARC": str(code), "NOMEPARC": f"Parceiro {code}", "ATIVO": "S", "CODCID": "10"}
        for code in codes
    ]
