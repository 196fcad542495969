from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from .domain.flows import ConversationState


class ConversationStore:
    """In-memory ``identity -> ConversationState`` map with one lock per identity.

    Holding :meth:`turn` gives the caller exclusive access to that identity's
    state for the whole turn, so redelivered updates cannot interleave.
    """

    def __init__(self) -> None:
        self._states: dict[str, ConversationState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, identity: str) -> asyncio.Lock:
        lock = self._locks.get(identity)
        if lock is None:
            lock = self._locks[identity] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def turn(self, identity: str) -> AsyncIterator[ConversationState]:
        async with self._lock_for(identity):
            yield self._states.setdefault(identity, ConversationState())

    def peek(self, identity: str) -> ConversationState | None:
        return self._states.get(identity)
