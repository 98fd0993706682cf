import logging
import time
from enum import Enum
from typing import Callable, Optional, Protocol

from .models import UserSession

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    async def create_session(self, user_id: str) -> UserSession: ...

    async def end_session(self, session_id: str, duration_seconds: int) -> None: ...


class TrackerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


def _wall_clock_ms() -> float:
    return time.time() * 1000


def session_duration_seconds(start_ms: float, end_ms: float) -> int:
    """Whole seconds between two instants, rounded half up and never negative."""
    return max(0, int((end_ms - start_ms) / 1000 + 0.5))


class SessionTracker:
    """Record activity sessions for a single page instance.

    A session is open while a user is present and the page is visible. Hiding
    or unloading the page, or losing the user, closes it. Coming back opens a
    new session; sessions are never resumed. Events must be delivered one at
    a time: each handler runs to completion before the next one starts.
    """

    def __init__(
        self,
        store: SessionStore,
        user_id: Optional[str] = None,
        visible: bool = True,
        clock: Callable[[], float] = _wall_clock_ms,
    ):
        self._store = store
        self._clock = clock
        self.user_id = user_id
        self.visible = visible
        self._session_id: Optional[str] = None
        self._started_ms: Optional[float] = None

    @property
    def state(self) -> TrackerState:
        return TrackerState.OPEN if self._session_id else TrackerState.CLOSED

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    async def start(self) -> None:
        """Page loaded."""
        if self.visible:
            await self.open_session()

    async def visibility_changed(self, visible: bool) -> None:
        self.visible = visible
        if visible:
            await self.open_session()
        else:
            await self.close_session()

    async def set_user(self, user_id: Optional[str]) -> None:
        """Switch the identity the tracker records sessions for."""
        if user_id == self.user_id:
            return
        await self.close_session()
        self.user_id = user_id
        if self.visible:
            await self.open_session()

    async def unload(self) -> None:
        """Page is going away. Best effort: the write may not complete."""
        await self.close_session()

    async def open_session(self) -> None:
        if self._session_id or not self.user_id:
            return
        started_ms = self._clock()
        try:
            session = await self._store.create_session(self.user_id)
        except Exception as e:
            logger.error(f"Error starting session for {self.user_id}: {e}")
            return
        self._session_id = session.id
        self._started_ms = started_ms
        logger.info(f"Session started: {session.id}")

    async def close_session(self) -> None:
        if not self._session_id:
            return
        session_id = self._session_id
        duration = session_duration_seconds(self._started_ms, self._clock())
        self._session_id = None
        self._started_ms = None
        try:
            await self._store.end_session(session_id, duration)
        except Exception as e:
            logger.error(f"Error ending session {session_id}: {e}")
            return
        logger.info(f"Session ended: {session_id} Duration: {duration} seconds")
