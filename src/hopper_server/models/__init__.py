from hopper_server.models.connectors import ConnectorConfig
from hopper_server.models.jobs import Job
from hopper_server.models.webhook_events import WebhookEvent

__all__ = [
    "ConnectorConfig",
    "Job",
    "WebhookEvent",
]
