"""Shared fixtures: environment, in-memory SQLite database, order factory."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-webhook-secret-0123456789")
os.environ.setdefault("RESULT_TOKEN_SECRET", "test-result-token-secret-0123456789")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-0123456789")
os.environ.setdefault("PAYMENT_POLL_INTERVAL_SECONDS", "0")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers every table
from app.db.base import Base
from app.services.payments.ledger import OrderPaymentLedger
from tests.helpers import FakeGateway


def _sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Let SQLAlchemy own BEGIN so SAVEPOINTs behave on pysqlite
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture
def engine():
    engine = _sqlite_engine()
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def make_order(db):
    """Create a committed PENDING order/payment pair."""

    def _make(user_id="user-1", amount=10000, currency="KRW", metadata=None, name="Test order"):
        created = OrderPaymentLedger(db).create_order_and_payment(
            user_id=user_id,
            amount=amount,
            currency=currency,
            name=name,
            metadata=metadata or {},
        )
        db.commit()
        return created

    return _make
