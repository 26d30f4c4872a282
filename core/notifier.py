"""
Notification Sink - report outcomes to the user

Fire-and-forget: notify() returns nothing and never raises. The core
never reads anything back from the sink.

- LogNotifier:     logs + keeps a bounded history for GET /notifications
- WebhookNotifier: additionally POSTs each notification to a URL (aiohttp),
                   on a background task; delivery failures are only logged
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional

import aiohttp

from .constants import MARKET_RULES

logger = logging.getLogger("onchainfarm.notify")


class NotificationKind(Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class Notification:
    kind: NotificationKind
    title: str
    message: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["kind"] = self.kind.value
        return d


class LogNotifier:

    def __init__(self, max_history: int = MARKET_RULES.MAX_NOTIFICATIONS):
        self.history: list[Notification] = []
        self._max_history = max_history

    def notify(self, kind: NotificationKind, title: str, message: str):
        n = Notification(kind=kind, title=title, message=message)
        self.history.append(n)
        if len(self.history) > self._max_history:
            self.history = self.history[-self._max_history:]

        if kind == NotificationKind.ERROR:
            logger.warning(f"[{title}] {message}")
        else:
            logger.info(f"[{title}] {message}")
        self._deliver(n)

    def _deliver(self, notification: Notification):
        """Hook for outbound channels."""

    def success(self, title: str, message: str):
        self.notify(NotificationKind.SUCCESS, title, message)

    def error(self, title: str, message: str):
        self.notify(NotificationKind.ERROR, title, message)

    def recent(self, limit: int = 20) -> list[dict]:
        return [n.to_dict() for n in self.history[-limit:]]


class WebhookNotifier(LogNotifier):
    """POSTs {kind, title, message, timestamp} JSON to a webhook URL."""

    def __init__(self, url: str, max_history: int = MARKET_RULES.MAX_NOTIFICATIONS,
                 timeout_seconds: float = 10.0):
        super().__init__(max_history)
        self.url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None
        self._tasks: set[asyncio.Task] = set()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    def _deliver(self, notification: Notification):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop - webhook delivery skipped")
            return
        task = loop.create_task(self._post(notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _post(self, notification: Notification):
        try:
            session = await self._get_session()
            async with session.post(self.url, json=notification.to_dict()) as resp:
                if resp.status >= 400:
                    logger.warning(f"Webhook returned {resp.status} for '{notification.title}'")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Webhook delivery failed: {e}")

    async def close(self):
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._session and not self._session.closed:
            await self._session.close()
