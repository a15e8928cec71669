import asyncio
import uuid
from collections.abc import Iterable
from typing import Protocol, Set

import httpx
import structlog
from sqlalchemy import event as sa_event
from sqlalchemy.ext.asyncio import AsyncSession

from plotshare.config import settings
from plotshare.models.enums import DisputeEvent

logger = structlog.get_logger()


class Notifier(Protocol):
    def dispatch(
        self,
        event: DisputeEvent,
        recipient_ids: Iterable[uuid.UUID],
        data: dict | None = None,
    ) -> object: ...


# Keep references to background tasks to prevent GC collection
_background_tasks: Set[asyncio.Task] = set()

_http_client: httpx.AsyncClient | None = None


def _get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        timeout = settings.NOTIFICATION_TIMEOUT_SECONDS
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout),
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


async def deliver(event: str, recipient_ids: list[str], data: dict) -> bool:
    """POST one dispute event to the notification service.

    If NOTIFICATION_WEBHOOK_URL is not configured, logs and returns True (dev mode).
    Never raises: delivery problems are logged and reported as False.
    """
    if not settings.NOTIFICATION_WEBHOOK_URL:
        logger.info("notification_dev_mode", event_type=event, recipients=len(recipient_ids))
        return True

    try:
        client = _get_http_client()
        response = await client.post(
            settings.NOTIFICATION_WEBHOOK_URL,
            json={"event": event, "recipients": recipient_ids, "data": data},
        )
        if response.is_success:
            logger.info("notification_sent", event_type=event, recipients=len(recipient_ids))
            return True
        logger.error(
            "notification_send_failed",
            event_type=event,
            status_code=response.status_code,
        )
        return False
    except Exception as exc:
        logger.error("notification_send_error", event_type=event, error=str(exc))
        return False


class NotificationDispatcher:
    """Fire-and-forget delivery of dispute events.

    ``dispatch`` returns immediately; the HTTP call runs as a background task
    outside the caller's transaction.
    """

    def dispatch(
        self,
        event: DisputeEvent,
        recipient_ids: Iterable[uuid.UUID],
        data: dict | None = None,
    ) -> asyncio.Task | None:
        recipients = sorted({str(r) for r in recipient_ids if r is not None})
        if not recipients:
            return None
        payload = dict(data) if data else {}
        payload.setdefault("type", event.value)
        task = asyncio.create_task(deliver(event.value, recipients, payload))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return task


notification_dispatcher = NotificationDispatcher()


class TransactionalNotifier:
    """Holds dispatches until the session's transaction commits.

    Events queued in a transaction that rolls back are dropped, so parties
    are never told about a change that was not persisted.
    """

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: NotificationDispatcher = notification_dispatcher,
    ) -> None:
        self.dispatcher = dispatcher
        self.pending: list[tuple[DisputeEvent, list[uuid.UUID], dict | None]] = []
        sa_event.listen(session.sync_session, "after_commit", self._release)
        sa_event.listen(session.sync_session, "after_soft_rollback", self._discard)

    def dispatch(
        self,
        event: DisputeEvent,
        recipient_ids: Iterable[uuid.UUID],
        data: dict | None = None,
    ) -> None:
        self.pending.append((event, list(recipient_ids), data))

    def _release(self, session) -> None:
        pending, self.pending = self.pending, []
        for dispute_event, recipients, data in pending:
            self.dispatcher.dispatch(dispute_event, recipients, data)

    def _discard(self, session, previous_transaction) -> None:
        if self.pending:
            logger.info("notifications_dropped_on_rollback", count=len(self.pending))
        self.pending = []
