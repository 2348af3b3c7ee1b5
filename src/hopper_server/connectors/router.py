import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from hopper_server.connectors.store import find_by_channel_id, get_connector, save_connector
from hopper_server.dependencies import get_db_session, get_readonly_db_session
from hopper_server.models.connectors import ConnectorConfig
from hopper_server.schemas.connectors import ConnectorRequest, ConnectorResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1", tags=["connectors"])


def _to_response(connector: ConnectorConfig) -> ConnectorResponse:
    return ConnectorResponse(
        id=connector.id,
        connector_type=connector.connector_type,
        channel_id=connector.channel_id,
        is_active=connector.is_active,
        has_webhook_secret=bool(connector.webhook_secret),
        created_at=connector.created_at,
    )


@router.put("/connectors/{connector_id}")
async def register_connector(
    connector_id: str,
    request: ConnectorRequest,
    session: AsyncSession = Depends(get_db_session),
) -> ConnectorResponse:
    """Register or update the connector a provider channel belongs to."""
    if request.id != connector_id:
        raise HTTPException(status_code=400, detail="Connector id in path and body differ")

    if request.channel_id:
        holder = await find_by_channel_id(session, request.channel_id)
        if holder is not None and holder.id != connector_id:
            raise HTTPException(status_code=409, detail=f"Channel already registered to connector {holder.id}")

    existing = await get_connector(session, connector_id)
    connector = ConnectorConfig(
        id=connector_id,
        connector_type=request.connector_type,
        channel_id=request.channel_id,
        webhook_secret=request.webhook_secret,
        is_active=request.is_active,
        **({"created_at": existing.created_at} if existing else {}),
    )
    saved = await save_connector(session, connector)
    logger.info(f"Connector {connector_id} ({request.connector_type}) registered")
    return _to_response(saved)


@router.get("/connectors/{connector_id}")
async def read_connector(
    connector_id: str,
    session: AsyncSession = Depends(get_readonly_db_session),
) -> ConnectorResponse:
    connector = await get_connector(session, connector_id)
    if connector is None:
        raise HTTPException(status_code=404, detail="Connector not found")
    return _to_response(connector)
