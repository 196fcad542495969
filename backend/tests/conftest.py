"""Shared fixtures: in-memory database, fake clock, seeded record store."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

import pytest

# Must be set before dompet.config is imported anywhere.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from dompet.db import Base  # noqa: E402
from dompet.engine import ConversationEngine  # noqa: E402
from dompet.models import AccountType, CategoryKind  # noqa: E402
from dompet.otp import OtpAuthority  # noqa: E402
from dompet.sessions import SessionStore  # noqa: E402
from dompet.store import RecordStore  # noqa: E402
from dompet.transaction_parser import HeuristicTransactionParser  # noqa: E402

# 10:00 in Asia/Jakarta.
START = datetime(2025, 3, 10, 3, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


@pytest.fixture()
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(session_factory):
    return RecordStore(session_factory)


@pytest.fixture()
def seeded_store(store):
    store.add_category("Food", "🍔", "makan,kopi,bakso,nasi", CategoryKind.EXPENSE)
    store.add_category("Transport", "🚗", "gojek,grab,bensin,parkir", CategoryKind.EXPENSE)
    store.add_category("Shopping", "🛍️", "belanja,baju", CategoryKind.EXPENSE)
    store.add_category("Salary", "💼", "gaji,bonus", CategoryKind.INCOME)
    store.add_category("Other", "📦", "lainnya", CategoryKind.EXPENSE)
    store.add_account("BCA", AccountType.BANK, 1_000_000, "🏦")
    store.add_account("Gopay", AccountType.E_WALLET, 200_000, "📱")
    return store


@pytest.fixture()
def otp(session_factory, clock):
    return OtpAuthority(session_factory=session_factory, clock=clock)


@pytest.fixture()
def sessions(session_factory, clock):
    return SessionStore(session_factory, clock=clock)


@pytest.fixture()
def conversation(seeded_store, otp, sessions, clock):
    return ConversationEngine(seeded_store, otp, sessions, HeuristicTransactionParser(), clock=clock)
