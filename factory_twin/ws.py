from __future__ import annotations

"""
File: factory_twin/ws.py
Purpose: WebSocket broadcast relay (telemetry channel) for twin viewers.
Key responsibilities:
- Track consumers and greet each one with a single welcome event.
- Stamp producer payloads and fan them out to every connected consumer.
- Keep per-consumer FIFO delivery through one outbound queue per consumer.
- Drop unreachable consumers without affecting producers or other consumers.
- Append accepted events to the log sink off the event loop (best effort).
"""

import asyncio
from datetime import datetime, timedelta, timezone
import json
import logging
import math
from typing import Any
import uuid

from fastapi import WebSocket, status

from factory_twin.logsink import LogSink
from factory_twin.schemas import EventKind, TelemetryEvent

logger = logging.getLogger("factory-twin-ws")


class MalformedPayload(ValueError):
    """Publish body that is not a JSON object or array."""


class ConsumerUnreachable(Exception):
    """Delivery to a closed or saturated consumer."""


def _reject_constant(name: str) -> Any:
    raise MalformedPayload(f"non-finite number {name} is not valid JSON")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise MalformedPayload(f"number {text} overflows a double")
    return value


def parse_payload(raw: str | bytes) -> Any:
    """Parse an inbound frame into structured data or raise MalformedPayload."""
    try:
        payload = json.loads(raw, parse_float=_finite_float, parse_constant=_reject_constant)
    except MalformedPayload:
        raise
    except (TypeError, ValueError, RecursionError) as exc:
        raise MalformedPayload(f"invalid JSON: {exc}") from exc
    if not isinstance(payload, (dict, list)):
        raise MalformedPayload("payload must be a JSON object or array")
    return payload


class ConsumerHandle:
    """One connected consumer and its outbound queue."""
    def __init__(self, websocket: WebSocket, connected_at: datetime, max_pending: int) -> None:
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.connected_at = connected_at
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_pending)
        self.closed = False
        self.task: asyncio.Task | None = None

    def offer(self, text: str) -> None:
        """Queue a frame without waiting; raise if the consumer cannot take it."""
        if self.closed:
            raise ConsumerUnreachable(self.id)
        try:
            self.queue.put_nowait(text)
        except asyncio.QueueFull as exc:
            raise ConsumerUnreachable(f"{self.id} outbound queue full") from exc


class TelemetryChannel:
    """Manage WebSocket consumers and broadcast stamped events."""
    def __init__(
        self,
        sink: LogSink | None = None,
        welcome_message: str = "Connected",
        max_pending: int = 1000,
        name: str = "telemetry",
    ) -> None:
        self.sink = sink
        self.welcome_message = welcome_message
        self.max_pending = max(1, max_pending)
        self.name = name
        self.consumers: dict[str, ConsumerHandle] = {}
        self._lock = asyncio.Lock()
        self._last_stamp: datetime | None = None

    @property
    def consumer_count(self) -> int:
        return len(self.consumers)

    def stamp(self) -> datetime:
        """Channel clock; strictly increasing even when the wall clock is coarse."""
        now = datetime.now(timezone.utc)
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + timedelta(microseconds=1)
        self._last_stamp = now
        return now

    async def connect(self, websocket: WebSocket) -> ConsumerHandle:
        """Accept a consumer, queue its welcome event, then register it."""
        await websocket.accept()
        handle = ConsumerHandle(websocket, self.stamp(), self.max_pending)
        welcome = TelemetryEvent(
            kind="welcome",
            received_at=self.stamp(),
            payload={"type": "connected", "message": self.welcome_message},
        )
        handle.offer(welcome.to_text())
        async with self._lock:
            self.consumers[handle.id] = handle
        handle.task = asyncio.create_task(self._writer(handle))
        logger.info("%s consumer connected id=%s consumers=%d", self.name, handle.id, len(self.consumers))
        return handle

    async def disconnect(self, handle: ConsumerHandle) -> None:
        """Remove a consumer; safe to call more than once."""
        async with self._lock:
            removed = self.consumers.pop(handle.id, None)
        handle.closed = True
        while True:
            try:
                handle.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            handle.queue.task_done()
        task = handle.task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        if removed is not None:
            logger.info("%s consumer disconnected id=%s consumers=%d", self.name, handle.id, len(self.consumers))

    async def publish(self, payload: Any, kind: EventKind = "relay") -> TelemetryEvent:
        """Stamp payload, fan it out to every consumer and record it in the sink."""
        event = TelemetryEvent(kind=kind, received_at=self.stamp(), payload=payload)
        try:
            text = event.to_text()
        except (TypeError, ValueError, RecursionError) as exc:
            raise MalformedPayload(f"payload is not serializable: {exc}") from exc

        async with self._lock:
            consumers = list(self.consumers.values())
        stale: list[ConsumerHandle] = []
        for handle in consumers:
            if handle.closed:
                continue
            try:
                handle.offer(text)
            except ConsumerUnreachable:
                stale.append(handle)
        for handle in stale:
            await self._drop(handle, "outbound queue full")

        if self.sink is not None:
            line = self.sink.record(f"{self.name} {text}")
            await asyncio.to_thread(self.sink.write, line)
        return event

    async def publish_raw(self, raw: str | bytes) -> TelemetryEvent:
        """Parse an inbound frame and publish it."""
        return await self.publish(parse_payload(raw))

    def reply_error(self, handle: ConsumerHandle, exc: Exception) -> None:
        """Send an error event to one consumer only."""
        event = TelemetryEvent(
            kind="error",
            received_at=self.stamp(),
            payload={"error": "malformed_payload", "detail": str(exc)},
        )
        try:
            handle.offer(event.to_text())
        except ConsumerUnreachable:
            logger.debug("%s error reply dropped id=%s", self.name, handle.id)

    async def flush(self) -> None:
        """Wait until every queued frame has been handed to its socket."""
        async with self._lock:
            consumers = list(self.consumers.values())
        await asyncio.gather(*(handle.queue.join() for handle in consumers))

    async def close(self) -> None:
        """Disconnect every consumer."""
        async with self._lock:
            consumers = list(self.consumers.values())
        for handle in consumers:
            await self.disconnect(handle)

    async def _writer(self, handle: ConsumerHandle) -> None:
        """Deliver queued frames to one socket in order."""
        try:
            while True:
                text = await handle.queue.get()
                try:
                    await handle.websocket.send_text(text)
                finally:
                    handle.queue.task_done()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            await self._drop(handle, str(exc))

    async def _drop(self, handle: ConsumerHandle, reason: str) -> None:
        """Unregister an unreachable consumer and close its socket so it can reconnect."""
        if handle.closed:
            return
        logger.warning("%s dropping unreachable consumer id=%s reason=%s", self.name, handle.id, reason)
        await self.disconnect(handle)
        try:
            await handle.websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        except Exception as exc:  # noqa: BLE001
            logger.debug("%s close after drop failed id=%s err=%s", self.name, handle.id, exc)
