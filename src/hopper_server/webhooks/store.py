import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from hopper_server.models.webhook_events import WebhookEvent

logger = logging.getLogger(__name__)


async def find_event(session: AsyncSession, source: str, event_id: str) -> Optional[WebhookEvent]:
    stmt = (
        select(WebhookEvent)
        .where(col(WebhookEvent.source) == source, col(WebhookEvent.event_id) == event_id)
        .limit(1)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def record_event(
    session: AsyncSession,
    *,
    source: str,
    event_id: str,
    event_type: str,
    connector_id: Optional[str],
    payload: Dict[str, Any],
    received_at: int,
) -> Tuple[WebhookEvent, bool]:
    """Store a delivery once per (source, event_id).

    Returns the stored event and whether this call created it.
    """
    existing = await find_event(session, source, event_id)
    if existing is not None:
        return existing, False

    event = WebhookEvent(
        source=source,
        event_id=event_id,
        event_type=event_type,
        connector_id=connector_id,
        payload=payload,
        received_at=received_at,
    )
    session.add(event)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        winner = await find_event(session, source, event_id)
        if winner is None:
            raise
        return winner, False
    return event, True


async def mark_processed(
    session: AsyncSession,
    event_pk: int,
    *,
    now: int,
    job_id: Optional[int] = None,
    note: Optional[str] = None,
) -> None:
    stmt = (
        update(WebhookEvent)
        .where(col(WebhookEvent.id) == event_pk)
        .values(processed=True, processed_at=now, job_id=job_id, processing_error=note)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


async def mark_failed(session: AsyncSession, event_pk: int, *, error: str) -> None:
    stmt = (
        update(WebhookEvent)
        .where(col(WebhookEvent.id) == event_pk)
        .values(processing_error=error[:2000])
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


async def bump_retry_count(session: AsyncSession, event_pk: int) -> None:
    stmt = (
        update(WebhookEvent)
        .where(col(WebhookEvent.id) == event_pk)
        .values(retry_count=WebhookEvent.retry_count + 1)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)
