"""Zoom event notifications for cloud recordings."""

from typing import Any, Dict

from hopper_server.schemas.webhooks import ChangeKind, ZoomWebhookBody
from hopper_server.webhooks.signatures import hmac_sha256_hex
from hopper_server.webhooks.translator import Notification

SOURCE = "zoom"

SIGNATURE_HEADER = "x-zm-signature"
TIMESTAMP_HEADER = "x-zm-request-timestamp"

URL_VALIDATION_EVENT = "endpoint.url_validation"

EVENT_KINDS = {
    URL_VALIDATION_EVENT: ChangeKind.HANDSHAKE,
    "recording.completed": ChangeKind.CHANGED,
    "recording.transcript_completed": ChangeKind.CHANGED,
    "recording.recovered": ChangeKind.CHANGED,
    "recording.renamed": ChangeKind.CHANGED,
    "recording.trashed": ChangeKind.REMOVED,
    "recording.deleted": ChangeKind.REMOVED,
}


def _object_id(payload: Dict[str, Any]) -> str:
    obj = payload.get("object") or {}
    if not isinstance(obj, dict):
        return ""
    return str(obj.get("uuid") or obj.get("id") or "")


def parse_notification(body: ZoomWebhookBody, timestamp: str) -> Notification:
    event_ts = body.event_ts if body.event_ts is not None else timestamp
    return Notification(
        source=SOURCE,
        event_id=f"{body.event}:{event_ts}:{_object_id(body.payload)}",
        event_type=body.event,
        kind=EVENT_KINDS.get(body.event, ChangeKind.OTHER),
        payload=body.model_dump(mode="json"),
    )


def url_validation_response(secret: str, body: ZoomWebhookBody) -> Dict[str, str]:
    """Echo Zoom's plainToken together with its HMAC, proving we hold the secret."""
    plain_token = str(body.payload.get("plainToken", ""))
    return {"plainToken": plain_token, "encryptedToken": hmac_sha256_hex(secret, plain_token)}
