import asyncio
from datetime import datetime, timedelta

from loguru import logger

from finscope.intake.machine import new_state
from finscope.models.schemas import ConversationState


class SessionStore:
    """In-memory conversation states, one lock per session.

    Turns of the same session are serialized through its lock; different
    sessions share nothing and can run concurrently. States idle for longer
    than the timeout are swept whenever a session is loaded, together with
    locks nobody holds.
    """

    def __init__(self, timeout_minutes: int = 30):
        self.timeout = timedelta(minutes=timeout_minutes)
        self._states: dict[str, ConversationState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, session_id: str) -> asyncio.Lock:
        return self._locks.setdefault(session_id, asyncio.Lock())

    def get(self, session_id: str, now: datetime, user_id: str | None = None) -> ConversationState:
        self._sweep(now, keep=session_id)
        state = self._states.get(session_id)
        if state is not None and now - state.updated_at > self.timeout:
            logger.info("Session {} expired after {}", session_id, self.timeout)
            state = None
        if state is None:
            state = new_state(session_id, user_id)
            state.updated_at = now
            self._states[session_id] = state
        return state

    def peek(self, session_id: str) -> ConversationState | None:
        return self._states.get(session_id)

    def put(self, state: ConversationState) -> None:
        self._states[state.session_id] = state

    def discard(self, session_id: str) -> bool:
        """Drop the state. The lock stays while a turn may be waiting on it."""
        return self._states.pop(session_id, None) is not None

    def _sweep(self, now: datetime, keep: str) -> None:
        expired = [
            session_id
            for session_id, state in self._states.items()
            if session_id != keep and now - state.updated_at > self.timeout
        ]
        for session_id in expired:
            del self._states[session_id]
        if expired:
            logger.info("Swept {} expired sessions", len(expired))

        for session_id, lock in list(self._locks.items()):
            if session_id != keep and session_id not in self._states and not lock.locked():
                del self._locks[session_id]

    def __len__(self) -> int:
        return len(self._states)
