"""Google Drive push notifications (changes.watch / files.watch channels).

Drive puts everything in headers; the body is empty. The message number grows
by one per delivery on a channel, so channel id plus message number names a
delivery exactly.
"""

from typing import Mapping, Optional

from hopper_server.schemas.webhooks import ChangeKind
from hopper_server.webhooks.translator import Notification

SOURCE = "google_drive"

CHANNEL_ID_HEADER = "x-goog-channel-id"
RESOURCE_STATE_HEADER = "x-goog-resource-state"
MESSAGE_NUMBER_HEADER = "x-goog-message-number"
CHANNEL_TOKEN_HEADER = "x-goog-channel-token"
RESOURCE_ID_HEADER = "x-goog-resource-id"
RESOURCE_URI_HEADER = "x-goog-resource-uri"
CHANGED_HEADER = "x-goog-changed"

REQUIRED_HEADERS = (CHANNEL_ID_HEADER, RESOURCE_STATE_HEADER, MESSAGE_NUMBER_HEADER)

STATE_KINDS = {
    "sync": ChangeKind.HANDSHAKE,
    "add": ChangeKind.CHANGED,
    "update": ChangeKind.CHANGED,
    "change": ChangeKind.CHANGED,
    "untrash": ChangeKind.CHANGED,
    "remove": ChangeKind.REMOVED,
    "trash": ChangeKind.REMOVED,
}


class MalformedNotification(ValueError):
    pass


def missing_headers(headers: Mapping[str, str]) -> list[str]:
    return [name for name in REQUIRED_HEADERS if not headers.get(name)]


def parse_notification(headers: Mapping[str, str]) -> Notification:
    missing = missing_headers(headers)
    if missing:
        raise MalformedNotification(f"Missing required headers: {', '.join(missing)}")

    channel_id = headers[CHANNEL_ID_HEADER]
    state = headers[RESOURCE_STATE_HEADER].strip().lower()
    message_number = headers[MESSAGE_NUMBER_HEADER].strip()
    if not (message_number.isascii() and message_number.isdigit()):
        raise MalformedNotification(f"Invalid message number: {message_number}")

    payload = {
        "channel_id": channel_id,
        "resource_state": state,
        "message_number": int(message_number),
        "resource_id": headers.get(RESOURCE_ID_HEADER),
        "resource_uri": headers.get(RESOURCE_URI_HEADER),
        "changed": headers.get(CHANGED_HEADER),
    }
    return Notification(
        source=SOURCE,
        event_id=f"{channel_id}:{message_number}",
        event_type=state,
        kind=STATE_KINDS.get(state, ChangeKind.OTHER),
        payload={key: value for key, value in payload.items() if value is not None},
    )


def channel_token(headers: Mapping[str, str]) -> Optional[str]:
    return headers.get(CHANNEL_TOKEN_HEADER)
