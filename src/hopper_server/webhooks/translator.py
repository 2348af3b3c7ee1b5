"""Turns provider change notifications into connector sync jobs.

A burst of notifications for one connector collapses into a single sync job:
the first one schedules it a few seconds out, later ones find it through the
connector's dedupe key and only refresh its payload.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from hopper_server.database import current_timestamp
from hopper_server.queues.enqueue import enqueue
from hopper_server.schemas.jobs import DuplicatePolicy, JobType
from hopper_server.schemas.webhooks import ChangeKind
from hopper_server.settings import Settings
from hopper_server.webhooks import store as webhook_store

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    """A provider delivery reduced to what the translator needs."""

    source: str
    event_id: str
    event_type: str
    kind: ChangeKind
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Translation:
    status: str
    message: str
    job_id: Optional[int] = None


def sync_dedupe_key(connector_id: str, kind: ChangeKind) -> str:
    if kind is ChangeKind.REMOVED:
        return f"{JobType.SYNC_CONNECTOR.value}:{connector_id}:reconcile"
    return f"{JobType.SYNC_CONNECTOR.value}:{connector_id}"


async def translate(
    session: AsyncSession,
    notification: Notification,
    *,
    connector_id: str,
    settings: Settings,
    now: Optional[int] = None,
) -> Translation:
    """Persist the delivery, then enqueue the sync it calls for.

    The event row is committed before any job is enqueued so a replay of a
    delivery that failed half way is recognised and retried, never doubled.
    """
    now = current_timestamp() if now is None else now
    event, created = await webhook_store.record_event(
        session,
        source=notification.source,
        event_id=notification.event_id,
        event_type=notification.event_type,
        connector_id=connector_id,
        payload=notification.payload,
        received_at=now,
    )
    assert event.id is not None
    if not created:
        if event.processed:
            logger.info(f"Duplicate {notification.source} delivery {notification.event_id} ignored")
            return Translation(status="duplicate", message="Event already processed", job_id=event.job_id)
        await webhook_store.bump_retry_count(session, event.id)
        logger.info(f"Retrying unprocessed {notification.source} delivery {notification.event_id}")
    await session.commit()

    try:
        job_id = await _enqueue_for(session, notification, connector_id, settings, now)
    except Exception as e:
        await session.rollback()
        await webhook_store.mark_failed(session, event.id, error=str(e))
        await session.commit()
        raise

    note = None if job_id is not None else f"No job for {notification.kind.value} event"
    await webhook_store.mark_processed(session, event.id, now=now, job_id=job_id, note=note)

    if job_id is None:
        return Translation(status="acknowledged", message=note or "Acknowledged")
    return Translation(status="accepted", message="Sync scheduled", job_id=job_id)


async def _enqueue_for(
    session: AsyncSession,
    notification: Notification,
    connector_id: str,
    settings: Settings,
    now: int,
) -> Optional[int]:
    if notification.kind is ChangeKind.CHANGED:
        sync_type = "incremental"
    elif notification.kind is ChangeKind.REMOVED:
        # The notification does not say which item went away
        sync_type = "reconciliation"
    else:
        return None

    result = await enqueue(
        session,
        JobType.SYNC_CONNECTOR,
        {
            "connector_id": connector_id,
            "sync_type": sync_type,
            "trigger": "webhook",
            "last_event_id": notification.event_id,
        },
        delay=settings.webhook_debounce_seconds,
        dedupe_key=sync_dedupe_key(connector_id, notification.kind),
        settings=settings,
        on_duplicate=DuplicatePolicy.MERGE,
        now=now,
    )
    logger.info(
        f"{notification.source} {notification.event_type} for connector {connector_id} -> "
        f"{sync_type} sync job {result.job_id} ({'new' if result.created else 'debounced'})"
    )
    return result.job_id
