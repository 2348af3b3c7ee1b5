"""Webhook API router.

Anything we can store answers 200, even when nothing comes of it, so
providers do not retry deliveries we chose to ignore. Only malformed requests
get a 400.
"""

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from hopper_server.connectors.store import find_by_channel_id, get_connector
from hopper_server.dependencies import get_db_session, get_settings
from hopper_server.schemas.webhooks import WebhookResponse, ZoomWebhookBody
from hopper_server.settings import Settings
from hopper_server.webhooks import google_drive, zoom
from hopper_server.webhooks.signatures import tokens_match, verify_zoom_signature
from hopper_server.webhooks.translator import translate

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


def _ignored(message: str) -> WebhookResponse:
    return WebhookResponse(status="ignored", message=message)


@router.post("/google-drive", response_model=WebhookResponse)
async def receive_google_drive_webhook(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> WebhookResponse:
    """Receive Drive push notifications for a watched channel."""
    try:
        notification = google_drive.parse_notification(request.headers)
    except google_drive.MalformedNotification as e:
        logger.warning(f"Rejected Drive notification: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    channel_id = notification.payload["channel_id"]
    logger.info(f"Received Drive notification {notification.event_id} ({notification.event_type})")

    connector = await find_by_channel_id(session, channel_id)
    if connector is None or not connector.is_active or connector.connector_type != google_drive.SOURCE:
        logger.warning(f"Drive notification for unknown or inactive channel {channel_id}")
        return _ignored("Unknown channel")

    if not connector.webhook_secret:
        if not settings.is_development:
            logger.warning(f"Drive connector {connector.id} has no channel token, notification rejected")
            return _ignored("Channel token not configured")
        logger.warning(f"Drive connector {connector.id} has no channel token, accepting unverified notification")
    elif not tokens_match(connector.webhook_secret, google_drive.channel_token(request.headers)):
        logger.warning(f"Drive notification for channel {channel_id} failed token verification")
        return _ignored("Channel token mismatch")

    translation = await translate(session, notification, connector_id=connector.id, settings=settings)
    return WebhookResponse(**asdict(translation))


@router.post("/zoom/{connector_id}")
async def receive_zoom_webhook(
    connector_id: str,
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> Any:
    """Receive Zoom recording events, including the endpoint validation handshake."""
    signature = request.headers.get(zoom.SIGNATURE_HEADER)
    timestamp = request.headers.get(zoom.TIMESTAMP_HEADER)
    if not signature or not timestamp:
        raise HTTPException(status_code=400, detail="Missing Zoom signature headers")

    raw_body = await request.body()
    try:
        body = ZoomWebhookBody.model_validate_json(raw_body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Malformed Zoom event: {e.error_count()} error(s)")

    connector = await get_connector(session, connector_id)
    if connector is None or not connector.is_active or connector.connector_type != zoom.SOURCE:
        logger.warning(f"Zoom event {body.event} for unknown or inactive connector {connector_id}")
        return _ignored("Unknown connector")

    if not verify_zoom_signature(connector.webhook_secret, timestamp, raw_body, signature):
        logger.warning(f"Zoom event {body.event} for connector {connector_id} failed signature verification")
        return _ignored("Signature mismatch")

    if body.event == zoom.URL_VALIDATION_EVENT:
        assert connector.webhook_secret is not None
        logger.info(f"Answering Zoom endpoint validation for connector {connector_id}")
        return zoom.url_validation_response(connector.webhook_secret, body)

    notification = zoom.parse_notification(body, timestamp)
    translation = await translate(session, notification, connector_id=connector.id, settings=settings)
    return WebhookResponse(**asdict(translation))
