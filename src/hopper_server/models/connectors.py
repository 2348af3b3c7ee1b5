import time

from sqlmodel import Field, SQLModel


class ConnectorConfig(SQLModel, table=True):
    """External connector a provider notification can be resolved against."""

    __tablename__ = "connector_configs"

    id: str = Field(primary_key=True)
    connector_type: str = Field(index=True)
    channel_id: str | None = Field(default=None, index=True, unique=True)
    webhook_secret: str | None = Field(default=None)
    is_active: bool = Field(default=True)
    created_at: int = Field(default_factory=lambda: int(time.time()))
