"""Chat-turn relay.

A turn stores the user's message, replays the session history to the
upstream model and streams the reply back while keeping a copy of it. When
the upstream stream ends, for any reason, the copy is stored as the
assistant message so the next turn replays exactly what the user saw.

    turn = relay.start(session_id, "how are you")    # Idle -> Persisting
    for chunk in turn.stream():                        # Streaming
        send(chunk)
                                                       # Committing -> Done | Errored

``start`` raises before any byte is streamed, so its errors can still become
a proper HTTP status. Errors after that point only end the stream early;
they are recorded on the turn and logged.
"""
import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Dict, Iterator, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from orca.chat.history import HistoryLoader
from orca.chat.store import MessageStore
from orca.chat.upstream import UpstreamCompletionClient
from orca.errors import CommitFailure, SessionNotFound, TurnInProgress, UpstreamError
from orca.models import Role

logger = logging.getLogger(__name__)


class RelayState(str, Enum):
    IDLE = "idle"
    PERSISTING = "persisting"
    STREAMING = "streaming"
    COMMITTING = "committing"
    DONE = "done"
    ERRORED = "errored"


class StreamAccumulator:
    """Collects every fragment of one turn for the final commit."""

    def __init__(self):
        self._parts: List[str] = []

    def write(self, fragment: str) -> None:
        self._parts.append(fragment)

    def getvalue(self) -> str:
        return "".join(self._parts)


class ChunkChannel:
    """Live side of a turn: fragments wait here until the response body takes them."""

    def __init__(self):
        self._pending = deque()

    def write(self, fragment: str) -> None:
        self._pending.append(fragment)

    def drain(self) -> Iterator[str]:
        while self._pending:
            yield self._pending.popleft()


class TeeWriter:
    """Forwards each write to every sink, in order.

    If a sink raises, the sinks after it do not see the fragment.
    """

    def __init__(self, *sinks):
        self.sinks = sinks

    def write(self, fragment: str) -> None:
        for sink in self.sinks:
            sink.write(fragment)


class SessionLocks:
    """Advisory per-session locks for serialising chat turns."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._locks: Dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def acquire(self, session_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.setdefault(session_id, threading.Lock())
        if not lock.acquire(timeout=self.timeout):
            raise TurnInProgress(session_id)
        return lock


class RelayTurn:
    def __init__(self, relay: "RelayEngine", session_id: int):
        self.relay = relay
        self.session_id = session_id
        self.state = RelayState.IDLE
        self.error: Optional[Exception] = None
        self.history: List[Dict[str, str]] = []
        self.reply: Optional[str] = None
        self._lock: Optional[threading.Lock] = None

    def _transition(self, state: RelayState) -> None:
        logger.info(f"Relay session_id={self.session_id}: {self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, error: Exception) -> None:
        self.error = error
        self._transition(RelayState.ERRORED)

    def begin(self, message: str) -> "RelayTurn":
        if self.relay.locks is not None:
            self._lock = self.relay.locks.acquire(self.session_id)
        self._transition(RelayState.PERSISTING)
        try:
            self.relay.store.append(self.session_id, Role.USER, message)
            # loaded after the append so the new message is part of the replay
            self.history = self.relay.history.load(self.session_id)
        except Exception as e:
            self._fail(e)
            self.close()
            raise
        return self

    def stream(self) -> Iterator[str]:
        """Relay upstream fragments to the caller, then commit the reply."""
        self._transition(RelayState.STREAMING)
        accumulator = StreamAccumulator()
        channel = ChunkChannel()
        tee = TeeWriter(channel, accumulator)
        deadline = None
        if self.relay.max_seconds:
            deadline = self.relay.clock() + self.relay.max_seconds
        upstream_error = None
        fragments = None
        try:
            fragments = self.relay.upstream.stream(self.history)
            for fragment in fragments:
                tee.write(fragment)
                yield from channel.drain()
                if deadline is not None and self.relay.clock() >= deadline:
                    raise UpstreamError(f"relay exceeded {self.relay.max_seconds}s")
        except UpstreamError as e:
            upstream_error = e
            logger.warning(f"Relay session_id={self.session_id}: upstream failed after {len(accumulator.getvalue())} chars: {e}")
        except GeneratorExit:
            logger.info(f"Relay session_id={self.session_id}: client disconnected, keeping {len(accumulator.getvalue())} chars")
            raise
        finally:
            close = getattr(fragments, "close", None)
            if close is not None:
                close()
            self._commit(accumulator.getvalue())
            if upstream_error is not None and self.error is None:
                self.error = upstream_error
            self.close()

    def _commit(self, reply: str) -> None:
        self._transition(RelayState.COMMITTING)
        try:
            self.relay.store.append(self.session_id, Role.ASSISTANT, reply)
        except (SessionNotFound, SQLAlchemyError) as e:
            self._fail(CommitFailure(self.session_id, e))
            logger.error(f"Durability violation: {self.error}")
            return
        self.reply = reply
        self._transition(RelayState.DONE)

    def close(self) -> None:
        """Release the session lock, if this turn holds it."""
        lock, self._lock = self._lock, None
        if lock is not None:
            lock.release()


class RelayEngine:
    def __init__(
        self,
        store: MessageStore,
        upstream: UpstreamCompletionClient,
        history: Optional[HistoryLoader] = None,
        max_seconds: Optional[float] = None,
        locks: Optional[SessionLocks] = None,
        clock=time.monotonic,
    ):
        self.store = store
        self.upstream = upstream
        self.history = history if history is not None else HistoryLoader(store)
        self.max_seconds = max_seconds
        self.locks = locks
        self.clock = clock

    def start(self, session_id: int, message: str) -> RelayTurn:
        return RelayTurn(self, session_id).begin(message)
