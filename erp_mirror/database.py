"""Database setup and session management."""
from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session

from erp_mirror.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


def enable_sqlite_savepoints(target: Engine) -> None:
    """Let pysqlite honour SAVEPOINT by emitting BEGIN ourselves."""

    @event.listens_for(target, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(target, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str) -> Engine:
    """Engine with a small bounded pool; reconciliation commits per batch to stay within it."""
    if url.startswith("sqlite"):
        # SQLite needs check_same_thread=False (scheduler worker runs on its own thread)
        target = create_engine(url, echo=False, connect_args={"check_same_thread": False})
        enable_sqlite_savepoints(target)
        return target
    return create_engine(
        url,
        echo=False,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """Dependency for DB sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = None):
    """Create all tables."""
    import erp_mirror.models  # noqa: F401  (registers mappers)

    Base.metadata.create_all(bind=bind or engine)


def utcnow() -> datetime:
    """Naive UTC now; all stored instants are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
