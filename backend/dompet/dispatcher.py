"""Glue between inbound chat events, the engine and the transport.

For every event: authorization gate, per-identity lock, engine turn in a
worker thread, then exactly one render delivered by editing the live message
(or deleting it and sending a fresh one when the edit fails).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar, Union

from .domain.flows import ConversationState
from .engine import ConversationEngine
from .errors import RecordStoreError, TransportError
from .render import Render, access_denied, unexpected_error
from .state import ConversationStore
from .transport import ChatTransport, EditOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class TextEvent:
    identity: str
    message_id: int
    text: str
    username: str | None = None
    first_name: str | None = None


@dataclass(frozen=True, slots=True)
class CallbackEvent:
    identity: str
    message_id: int
    token: str
    username: str | None
    callback_id: str


Event = Union[TextEvent, CallbackEvent]


class Dispatcher:
    def __init__(
        self,
        engine: ConversationEngine,
        transport: ChatTransport,
        conversations: ConversationStore | None = None,
        allowed_user: str | None = None,
        allowed_chat_id: str | None = None,
        timeout_seconds: float = 10.0,
        web_base_url: str | None = None,
    ) -> None:
        self.engine = engine
        self.transport = transport
        self.conversations = conversations or ConversationStore()
        self.allowed_user = allowed_user.lstrip("@").lower() if allowed_user else None
        self.allowed_chat_id = allowed_chat_id
        self.timeout_seconds = timeout_seconds
        self.web_base_url = web_base_url
        if not self.allowed_user and not self.allowed_chat_id:
            logger.warning("No allowed Telegram user or chat id configured; every event will be refused")

    def is_authorized(self, identity: str, username: str | None) -> bool:
        if self.allowed_chat_id and identity == self.allowed_chat_id:
            return True
        if self.allowed_user and username:
            return username.lstrip("@").lower() == self.allowed_user
        return False

    async def dispatch(self, event: Event) -> None:
        if isinstance(event, CallbackEvent):
            await self.handle_callback(event)
        else:
            await self.handle_text(event)

    async def handle_text(self, event: TextEvent) -> None:
        if not self.is_authorized(event.identity, event.username):
            logger.warning("Refused message from unauthorized chat %s (@%s)", event.identity, event.username)
            await self._send(event.identity, access_denied())
            return

        async with self.conversations.turn(event.identity) as state:
            await self._bounded(self.transport.delete_message(event.identity, event.message_id), False)
            if event.username:
                await self._register_profile(event)
            try:
                turn = await asyncio.to_thread(self.engine.handle_text, event.identity, event.text, state.flow)
            except Exception:
                logger.exception("Unhandled error while processing message from %s", event.identity)
                state.clear_flow()
                render = unexpected_error(self.web_base_url)
            else:
                state.flow = turn.flow
                render = turn.render
            await self._deliver(state, event.identity, render, state.last_message_id)

    async def handle_callback(self, event: CallbackEvent) -> None:
        if not self.is_authorized(event.identity, event.username):
            logger.warning("Refused callback from unauthorized chat %s (@%s)", event.identity, event.username)
            await self._bounded(
                self.transport.acknowledge_callback(event.callback_id, access_denied().text, alert=True), None
            )
            return

        await self._bounded(self.transport.acknowledge_callback(event.callback_id), None)
        async with self.conversations.turn(event.identity) as state:
            try:
                turn = await asyncio.to_thread(self.engine.handle_callback, event.identity, event.token, state.flow)
            except Exception:
                logger.exception("Unhandled error while processing callback %r from %s", event.token, event.identity)
                state.clear_flow()
                render = unexpected_error(self.web_base_url)
            else:
                state.flow = turn.flow
                render = turn.render
            await self._deliver(state, event.identity, render, event.message_id)

    async def _register_profile(self, event: TextEvent) -> None:
        try:
            await asyncio.to_thread(
                self.engine.store.register_profile, event.username, event.identity, event.first_name
            )
        except RecordStoreError as exc:
            logger.warning("Could not register profile for @%s: %s", event.username, exc)

    async def _deliver(self, state: ConversationState, identity: str, render: Render, target: int | None) -> None:
        """Show ``render`` as the single live message and remember its id."""
        if target is not None:
            outcome = await self._bounded(self.transport.edit_message(identity, target, render), EditOutcome.FAILED)
            if outcome != EditOutcome.FAILED:
                state.last_message_id = target
                return
            await self._bounded(self.transport.delete_message(identity, target), False)
        message_id = await self._send(identity, render)
        if message_id is not None:
            state.last_message_id = message_id

    async def _send(self, identity: str, render: Render) -> int | None:
        try:
            return await self._bounded(self.transport.send_message(identity, render), None)
        except TransportError as exc:
            logger.warning("Could not deliver message to %s: %s", identity, exc)
            return None

    async def _bounded(self, call: Awaitable[T], default: T) -> T:
        try:
            return await asyncio.wait_for(call, self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Transport call timed out after %.1fs", self.timeout_seconds)
            return default
