from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from hopper_server.models.connectors import ConnectorConfig


async def get_connector(session: AsyncSession, connector_id: str) -> Optional[ConnectorConfig]:
    return await session.get(ConnectorConfig, connector_id)


async def find_by_channel_id(session: AsyncSession, channel_id: str) -> Optional[ConnectorConfig]:
    stmt = select(ConnectorConfig).where(col(ConnectorConfig.channel_id) == channel_id).limit(1)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def save_connector(session: AsyncSession, connector: ConnectorConfig) -> ConnectorConfig:
    """Insert or replace a connector configuration."""
    merged = await session.merge(connector)
    await session.flush()
    return merged
