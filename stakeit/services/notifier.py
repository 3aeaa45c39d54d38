"""Fire-and-forget notification outbox.

Engines publish events after their state change has been committed.
Delivery happens on a background task; a failing channel is logged and
never reaches the code that published the event.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx

from stakeit.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    kind: str
    goal_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Channel = Callable[[NotificationEvent], Awaitable[None]]


class Notifier:
    """Queue of outbound events drained by a single worker task."""

    def __init__(self, channels: Optional[list[Channel]] = None):
        self._channels: list[Channel] = list(channels or [])
        self._queue: asyncio.Queue[NotificationEvent] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def add_channel(self, channel: Channel) -> None:
        self._channels.append(channel)

    def publish(self, kind: str, goal_id: str, **payload: Any) -> None:
        """Enqueue an event without waiting for delivery."""
        event = NotificationEvent(kind=kind, goal_id=goal_id, payload=payload)
        self._queue.put_nowait(event)
        logger.debug("notification_queued", kind=kind, goal_id=goal_id)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _deliver(self, event: NotificationEvent) -> None:
        for channel in self._channels:
            try:
                await channel(event)
            except Exception as e:
                logger.warning(
                    "notification_failed",
                    kind=event.kind,
                    goal_id=event.goal_id,
                    error=str(e),
                )

    async def flush(self) -> int:
        """Deliver everything queued so far. Returns the number delivered."""
        delivered = 0
        while not self._queue.empty():
            event = self._queue.get_nowait()
            await self._deliver(event)
            self._queue.task_done()
            delivered += 1
        return delivered

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            await self._deliver(event)
            self._queue.task_done()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None


class WebhookChannel:
    """Posts events as JSON to a chat-bot or integration webhook."""

    def __init__(self, url: str, timeout: float = 10.0):
        self._url = url
        self._timeout = timeout

    async def __call__(self, event: NotificationEvent) -> None:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._url, json={
                "kind": event.kind,
                "goal_id": event.goal_id,
                "payload": event.payload,
                "created_at": event.created_at.isoformat(),
            })
            response.raise_for_status()


async def log_channel(event: NotificationEvent) -> None:
    """Default channel: record the event in the application log."""
    logger.info("notification", kind=event.kind, goal_id=event.goal_id, **event.payload)
