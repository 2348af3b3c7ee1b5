import logging

from fastapi import APIRouter

from hopper_server.connectors.router import router as connectors_router
from hopper_server.queues.router import router as jobs_router
from hopper_server.triggers.router import router as triggers_router
from hopper_server.webhooks.router import router as webhooks_router

router = APIRouter()
logger = logging.getLogger(__name__)
router.include_router(jobs_router)
router.include_router(connectors_router)
router.include_router(webhooks_router)
router.include_router(triggers_router)
