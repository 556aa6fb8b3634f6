"""
Tip update subscriptions.

The content network has no push channel, so updates are delivered by
polling: every interval the channel re-reads an event's tip history and
hands it to the subscriber. The channel sits behind the UpdateChannel
protocol so a push-based implementation can replace polling without
touching callers.

Invariants:
    - The first poll happens one interval after subscribe()
    - After Subscription.cancel() no further callback is invoked
    - A failing callback or fetch is logged and polling continues
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Set, Union

from .models import TipRecord

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10.0


@dataclass(frozen=True)
class TipUpdate:
    """Snapshot of an event's tips delivered to a subscriber."""

    event_id: str
    tips: List[TipRecord] = field(default_factory=list)
    polled_at: float = field(default_factory=time.time)


UpdateCallback = Callable[[TipUpdate], Union[None, Awaitable[None]]]
HistoryFetcher = Callable[[str], Awaitable[List[TipRecord]]]


class Subscription:
    """Handle for one active subscription."""

    def __init__(self, event_id: str, task: asyncio.Task) -> None:
        self.event_id = event_id
        self._task = task

    @property
    def cancelled(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        """Stop all future polls. Safe to call more than once."""
        if not self._task.done():
            self._task.cancel()
            logger.debug("Subscription cancelled", extra={"event_id": self.event_id})

    async def wait_closed(self) -> None:
        """Wait until the polling task has finished."""
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class UpdateChannel(Protocol):
    """Delivers tip updates for an event to a callback."""

    def subscribe(self, event_id: str, callback: UpdateCallback) -> Subscription: ...

    async def close(self) -> None: ...


class PollingUpdateChannel:
    """UpdateChannel that polls a history fetcher at a fixed interval.

    Example:
        >>> channel = PollingUpdateChannel(tips.retrieve_history, interval=10.0)
        >>> sub = channel.subscribe("e1", lambda update: print(len(update.tips)))
        >>> sub.cancel()
    """

    def __init__(self, fetch: HistoryFetcher, interval: float = DEFAULT_POLL_INTERVAL) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.fetch = fetch
        self.interval = interval
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def subscribe(self, event_id: str, callback: UpdateCallback) -> Subscription:
        """Start polling an event. Must be called from a running event loop."""
        task = asyncio.create_task(self._poll_loop(event_id, callback))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(
            "Subscribed to tip updates",
            extra={"event_id": event_id, "interval_seconds": self.interval},
        )
        return Subscription(event_id, task)

    async def close(self) -> None:
        """Cancel every active subscription."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Closed {len(tasks)} subscriptions")

    async def _poll_loop(self, event_id: str, callback: UpdateCallback) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self._poll_once(event_id, callback)

    async def _poll_once(self, event_id: str, callback: UpdateCallback) -> None:
        try:
            tips = await self.fetch(event_id)
        except Exception as e:
            logger.error(f"Failed to poll tips: {e}", extra={"event_id": event_id})
            return

        update = TipUpdate(event_id=event_id, tips=tips)
        try:
            result: Optional[Any] = callback(update)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"Tip update callback failed: {e}",
                extra={"event_id": event_id},
                exc_info=True,
            )
