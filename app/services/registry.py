from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

logger = logging.getLogger(__name__)

CONNECT_EVENT = "connect"
NOTIFICATION_EVENT = "notification"
SUMMARY_EVENT = "notification-summary"
HEARTBEAT_EVENT = "heartbeat"


class StreamWriteError(Exception):
    """Raised when a frame cannot be handed to a client stream."""


@dataclass(slots=True)
class Frame:
    event: str
    data: str
    id: str | None = None

    def encode(self) -> str:
        lines: list[str] = []
        if self.id is not None:
            lines.append(f"id: {self.id}")
        lines.append(f"event: {self.event}")
        for chunk in self.data.splitlines() or [""]:
            lines.append(f"data: {chunk}")
        return "\n".join(lines) + "\n\n"


class EventStream(Protocol):
    @property
    def closed(self) -> bool: ...

    def send(self, frame: Frame) -> None: ...

    def close(self) -> None: ...


class QueueEventStream:
    """Server-sent-events stream backed by a bounded queue.

    ``send`` never blocks: a full queue means the client stopped reading and is
    reported as a write failure.
    """

    def __init__(self, max_size: int = 100) -> None:
        self._queue: asyncio.Queue[Frame | None] = asyncio.Queue(maxsize=max_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, frame: Frame) -> None:
        if self._closed:
            raise StreamWriteError("stream is closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull as exc:
            raise StreamWriteError("stream buffer is full") from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Reader notices the flag on its next poll.
            pass

    async def iter_frames(
        self,
        *,
        timeout_seconds: float | None = None,
        poll_seconds: float = 1.0,
    ) -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds if timeout_seconds is not None else None
        # Frames queued before close() are still drained; the None sentinel ends the stream.
        try:
            while True:
                wait_for = poll_seconds
                if deadline is not None:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        logger.info("sse stream reached its maximum lifetime")
                        break
                    wait_for = min(wait_for, remaining)
                try:
                    frame = await asyncio.wait_for(self._queue.get(), timeout=wait_for)
                except asyncio.TimeoutError:
                    if self._closed:
                        break
                    continue
                if frame is None:
                    break
                yield frame.encode()
        finally:
            self.close()


@dataclass(slots=True, eq=False)
class Connection:
    user_id: str
    stream: EventStream
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ConnectionRegistry:
    """Live stream per user id; at most one connection per user.

    The map is guarded by a lock and stream writes happen outside it, so a slow
    client never blocks registration or delivery to other users.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections: dict[str, Connection] = {}

    def register(self, user_id: str, stream: EventStream) -> Connection:
        connection = Connection(user_id=user_id, stream=stream)
        with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = connection
            total = len(self._connections)

        if previous is not None:
            logger.info("sse connection replaced user_id=%s", user_id)
            _close_stream(previous)
        logger.info("sse connect user_id=%s connections=%s", user_id, total)
        return connection

    def unregister(self, user_id: str, connection: Connection | None = None) -> bool:
        """Drop the user's connection; with ``connection`` given only that exact one is removed."""
        with self._lock:
            current = self._connections.get(user_id)
            if current is None or (connection is not None and current is not connection):
                return False
            del self._connections[user_id]
            total = len(self._connections)

        _close_stream(current)
        logger.info("sse disconnect user_id=%s connections=%s", user_id, total)
        return True

    def is_connected(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._connections

    def count(self) -> int:
        with self._lock:
            return len(self._connections)

    def snapshot(self) -> list[Connection]:
        with self._lock:
            return list(self._connections.values())

    def try_deliver(self, user_id: str, frame: Frame) -> bool:
        with self._lock:
            connection = self._connections.get(user_id)
        if connection is None:
            return False
        return self.deliver_to(connection, frame)

    def deliver_to(self, connection: Connection, frame: Frame) -> bool:
        try:
            connection.stream.send(frame)
        except Exception as exc:
            logger.warning(
                "sse delivery failed user_id=%s event=%s: %s",
                connection.user_id,
                frame.event,
                exc,
            )
            self.unregister(connection.user_id, connection)
            return False
        return True

    def close_all(self) -> int:
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
        for connection in connections:
            _close_stream(connection)
        if connections:
            logger.info("sse closed connections on shutdown: %s", len(connections))
        return len(connections)


def _close_stream(connection: Connection) -> None:
    try:
        connection.stream.close()
    except Exception:
        logger.exception("failed to close sse stream user_id=%s", connection.user_id)
