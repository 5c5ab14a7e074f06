"""Per-subscriber live-telemetry sessions."""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any

from pydantic import ValidationError

from hostpulse.composer import SnapshotComposer
from hostpulse.models import Snapshot

logger = logging.getLogger(__name__)

SYSTEM_INFO = "system-info"
PERFORMANCE_DATA = "performance-data"
DEFAULT_INTERVAL = 1.0

# Delivers one (event, payload) message to a subscriber.
Send = Callable[[str, dict[str, Any]], Awaitable[None]]


class SessionState(Enum):
    """Lifecycle states of a Session."""

    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"


async def cadence(interval: float) -> AsyncIterator[None]:
    """
    Yield once per `interval` seconds on a fixed schedule.

    Deadlines are computed from the start time so ticks do not drift. If the
    consumer falls behind, missed ticks are dropped rather than replayed.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time()
    while True:
        deadline += interval
        delay = deadline - loop.time()
        if delay < 0:
            deadline = loop.time()
            delay = 0.0
        await asyncio.sleep(delay)
        yield


class Session:
    """
    One subscriber connection.

    Sends the host's static info once, then a snapshot per tick until closed.
    Each tick runs as its own task and waits for the previous tick before
    delivering, so the subscriber sees snapshots in tick order. Once closed,
    no further messages are delivered, including from ticks already in flight.
    """

    def __init__(
        self,
        send: Send,
        composer: SnapshotComposer,
        interval: float = DEFAULT_INTERVAL,
        session_id: str | None = None,
        hub: "SnapshotHub | None" = None,
    ) -> None:
        """
        Initialize the Session.

        Args:
            send: Coroutine function delivering one message to the subscriber.
            composer: Produces the snapshots for this session.
            interval: Seconds between ticks. Ignored when `hub` is given.
            session_id: Subscriber identity. Generated when omitted.
            hub: Shared sampler to subscribe to instead of running a timer.
        """
        self._send = send
        self._composer = composer
        self._interval = interval
        self._hub = hub
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._state = SessionState.CONNECTING
        self._timer: asyncio.Task[None] | None = None
        self._last_tick: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()
        self._ticks = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def ticks(self) -> int:
        """Number of ticks this session has seen."""
        return self._ticks

    @property
    def has_timer(self) -> bool:
        """Check if this session's own timer is live."""
        return self._timer is not None and not self._timer.done()

    async def start(self) -> None:
        """Deliver `system-info` and begin ticking."""
        if self._state is not SessionState.CONNECTING:
            return

        info = await self._composer.adapter.host_info()
        await self._deliver(SYSTEM_INFO, info.model_dump(mode="json"))
        if self._state is SessionState.CLOSED:
            # Subscriber left while we were greeting it
            return

        self._state = SessionState.ACTIVE
        if self._hub is not None:
            self._hub.subscribe(self)
        else:
            self._timer = asyncio.create_task(self._run_timer(), name=f"session-{self.session_id}")
        logger.info("Session %s active", self.session_id)

    def close(self) -> None:
        """Stop ticking. Safe to call any number of times."""
        if self._state is SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._hub is not None:
            self._hub.unsubscribe(self)
        logger.info("Session %s closed after %d ticks", self.session_id, self._ticks)

    async def drain(self) -> None:
        """Wait for ticks already in flight to finish."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def push(self, snapshot: Snapshot) -> bool:
        """Deliver one snapshot. Returns False if it was not sent."""
        if self._state is not SessionState.ACTIVE:
            return False
        return await self._deliver(PERFORMANCE_DATA, snapshot.model_dump(mode="json"))

    async def receive(self, snapshot: Snapshot) -> bool:
        """Count a tick from a shared sampler and deliver its snapshot."""
        if self._state is SessionState.ACTIVE:
            self._ticks += 1
        return await self.push(snapshot)

    async def _run_timer(self) -> None:
        async for _ in cadence(self._interval):
            self._fire()

    def _fire(self) -> None:
        self._ticks += 1
        task = asyncio.create_task(self._tick(self._last_tick))
        self._last_tick = task
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _tick(self, previous: asyncio.Task[None] | None) -> None:
        try:
            snapshot: Snapshot | None = await self._composer.compose()
        except ValidationError:
            logger.exception("Session %s: snapshot failed validation, skipping tick", self.session_id)
            snapshot = None
        except Exception:
            logger.exception("Session %s: composing snapshot failed, skipping tick", self.session_id)
            snapshot = None

        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        if snapshot is not None:
            await self.push(snapshot)

    async def _deliver(self, event: str, payload: dict[str, Any]) -> bool:
        if self._state is SessionState.CLOSED:
            return False
        try:
            await self._send(event, payload)
        except (ConnectionError, RuntimeError) as exc:
            # Subscriber went away mid-send; the disconnect handler closes us
            logger.debug("Session %s: %s not delivered: %s", self.session_id, event, exc)
            return False
        return True


class SnapshotHub:
    """
    Shared sampler fanning one snapshot per tick out to many sessions.

    The sampling task runs only while at least one session is subscribed.
    """

    def __init__(self, composer: SnapshotComposer, interval: float = DEFAULT_INTERVAL) -> None:
        self._composer = composer
        self._interval = interval
        self._subscribers: dict[str, Session] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        """Check if the sampling task is running."""
        return self._task is not None and not self._task.done()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, session: Session) -> None:
        self._subscribers[session.session_id] = session
        if not self.is_running:
            self._task = asyncio.create_task(self._run(), name="snapshot-hub")

    def unsubscribe(self, session: Session) -> None:
        self._subscribers.pop(session.session_id, None)
        if not self._subscribers and self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        async for _ in cadence(self._interval):
            try:
                snapshot = await self._composer.compose()
            except Exception:
                logger.exception("Composing shared snapshot failed, skipping tick")
                continue
            sessions = list(self._subscribers.values())
            await asyncio.gather(*(session.receive(snapshot) for session in sessions))


class SessionManager:
    """Registry of live sessions, all sharing one composer and cadence."""

    def __init__(
        self,
        composer: SnapshotComposer,
        interval: float = DEFAULT_INTERVAL,
        shared_sampling: bool = False,
    ) -> None:
        """
        Initialize the SessionManager.

        Args:
            composer: Snapshot source for every session.
            interval: Seconds between ticks.
            shared_sampling: Sample once per tick for all sessions instead of
                once per session.
        """
        self._composer = composer
        self._interval = interval
        self._hub = SnapshotHub(composer, interval) if shared_sampling else None
        self._sessions: dict[str, Session] = {}

    @property
    def hub(self) -> SnapshotHub | None:
        return self._hub

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def open(self, send: Send, session_id: str | None = None) -> Session:
        """Register a new, not yet started, session."""
        session = Session(
            send,
            self._composer,
            interval=self._interval,
            session_id=session_id,
            hub=self._hub,
        )
        self._sessions[session.session_id] = session
        logger.info("Subscriber connected: %s", session.session_id)
        return session

    def close(self, session_id: str) -> None:
        """Close and forget a session. Unknown ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.close()
            logger.info("Subscriber disconnected: %s", session_id)

    @asynccontextmanager
    async def session(self, send: Send, session_id: str | None = None) -> AsyncIterator[Session]:
        """Open and start a session, closing it when the block exits."""
        session = self.open(send, session_id)
        try:
            await session.start()
            yield session
        finally:
            self.close(session.session_id)

    async def close_all(self) -> None:
        """Close every session and let in-flight ticks settle."""
        sessions = list(self._sessions.values())
        for session in sessions:
            self.close(session.session_id)
        await asyncio.gather(*(session.drain() for session in sessions))
