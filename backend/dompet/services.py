"""Wiring of the long-lived collaborators from :class:`Settings`."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from .clock import Clock, utcnow
from .config import Settings
from .db import SessionLocal
from .dispatcher import Dispatcher
from .engine import ConversationEngine
from .otp import OtpAuthority
from .sessions import SessionStore
from .store import RecordStore
from .transaction_parser import TransactionParser, build_parser
from .transport import ChatTransport


@dataclass
class Services:
    settings: Settings
    store: RecordStore
    otp: OtpAuthority
    sessions: SessionStore
    engine: ConversationEngine
    transport: ChatTransport | None = None
    dispatcher: Dispatcher | None = None


def build_services(
    settings: Settings,
    transport: ChatTransport | None = None,
    session_factory: sessionmaker[Session] = SessionLocal,
    clock: Clock = utcnow,
    parser: TransactionParser | None = None,
) -> Services:
    store = RecordStore(session_factory)
    otp = OtpAuthority.from_settings(settings, session_factory=session_factory, clock=clock)
    sessions = SessionStore(session_factory, clock=clock, duration=settings.session_duration)
    engine = ConversationEngine(
        store,
        otp,
        sessions,
        parser or build_parser(settings),
        clock=clock,
        timezone_name=settings.reference_timezone,
        web_base_url=settings.web_base_url,
    )
    dispatcher = None
    if transport is not None:
        dispatcher = Dispatcher(
            engine,
            transport,
            allowed_user=settings.telegram_allowed_user,
            allowed_chat_id=settings.telegram_allowed_chat_id,
            timeout_seconds=settings.transport_timeout_seconds,
            web_base_url=settings.web_base_url,
        )
    return Services(settings, store, otp, sessions, engine, transport, dispatcher)
