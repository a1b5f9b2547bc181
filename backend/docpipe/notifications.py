"""
Notification port — fire-and-forget job lifecycle events.

Events: job.started, job.completed, job.failed, job.cancelled.

emit() never raises and never blocks the caller: delivery failures are logged
and dropped. Delivery itself (websockets, e-mail, in-app inbox) belongs to the
notification service downstream of the webhook.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

logger = logging.getLogger(__name__)

JOB_STARTED   = "job.started"
JOB_COMPLETED = "job.completed"
JOB_FAILED    = "job.failed"
JOB_CANCELLED = "job.cancelled"


class Notifier(ABC):

    @abstractmethod
    def emit(self, event: str, payload: dict[str, Any]) -> None:
        """Hand off an event. Must not raise."""

    async def aclose(self) -> None:
        return None


class LoggingNotifier(Notifier):
    """Default when no webhook is configured."""

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        logger.info(
            "Notification | event=%s job=%s doc=%s status=%s",
            event, payload.get("jobId"), payload.get("documentId"), payload.get("status"),
        )


class WebhookNotifier(Notifier):
    """
    POSTs each event as JSON to a webhook in a background task.

    The event loop only keeps weak references to tasks, so pending deliveries
    are held in `_pending` until they finish.
    """

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._pending: set[asyncio.Task] = set()

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(event, payload))
        except RuntimeError:
            logger.warning("Notification dropped (no running loop) | event=%s", event)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: str, payload: dict[str, Any]) -> None:
        try:
            response = await self._client.post(self._url, json={"event": event, "payload": payload})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "Notification delivery failed | event=%s job=%s error=%s",
                event, payload.get("jobId"), exc,
            )

    async def aclose(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self._client.aclose()


def build_notifier(webhook_url: str = "") -> Notifier:
    if webhook_url:
        logger.info("Webhook notifier enabled | url=%s", webhook_url)
        return WebhookNotifier(webhook_url)
    return LoggingNotifier()
