import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from hopper_server.dependencies import get_db_session, get_settings
from hopper_server.settings import Settings
from hopper_server.triggers.definitions import TRIGGERS, fire_trigger
from hopper_server.webhooks.signatures import tokens_match

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/cron", tags=["cron"])


def require_cron_secret(
    x_cron_secret: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Fail closed: without a configured secret only development accepts calls."""
    if not settings.cron_secret:
        if settings.is_development:
            logger.warning("Cron secret not configured, accepting unauthenticated trigger in development")
            return
        logger.error("Cron secret not configured, rejecting trigger")
        raise HTTPException(status_code=503, detail="Cron secret not configured")

    if not tokens_match(settings.cron_secret, x_cron_secret):
        raise HTTPException(status_code=401, detail="Invalid cron secret")


@router.post("/{trigger_name}", dependencies=[Depends(require_cron_secret)])
async def run_trigger(
    trigger_name: str,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Enqueue the job behind a named timer."""
    trigger = TRIGGERS.get(trigger_name)
    if trigger is None:
        raise HTTPException(status_code=404, detail=f"Unknown trigger: {trigger_name}")

    result = await fire_trigger(session, trigger, settings)
    return {
        "trigger": trigger.name,
        "job_type": trigger.job_type.value,
        "job_id": result.job_id,
        "created": result.created,
    }
