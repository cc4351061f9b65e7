from __future__ import annotations

import asyncio
import logging

from opentelemetry import trace

from app.services.registry import HEARTBEAT_EVENT, ConnectionRegistry, Frame

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def heartbeat_frame() -> Frame:
    return Frame(event=HEARTBEAT_EVENT, data="ping")


class HeartbeatKeeper:
    """Periodically pings every live stream and prunes the ones that fail."""

    def __init__(self, registry: ConnectionRegistry, interval_seconds: float = 30.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("heartbeat interval must be positive")
        self.registry = registry
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="sse-heartbeat")
        logger.info("heartbeat started interval_seconds=%s", self.interval_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("heartbeat stopped")

    def beat(self) -> tuple[int, int]:
        sent = 0
        pruned = 0
        frame = heartbeat_frame()
        for connection in self.registry.snapshot():
            if self.registry.deliver_to(connection, frame):
                sent += 1
            else:
                pruned += 1
        return sent, pruned

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                with tracer.start_as_current_span("sse.heartbeat") as span:
                    sent, pruned = self.beat()
                    span.set_attribute("sse.heartbeat.sent", sent)
                    span.set_attribute("sse.heartbeat.pruned", pruned)
                if pruned:
                    logger.info("heartbeat pruned dead connections: %s (alive=%s)", pruned, sent)
                else:
                    logger.debug("heartbeat sent=%s", sent)
            except Exception as exc:
                logger.exception("heartbeat pass failed: %s", exc)
