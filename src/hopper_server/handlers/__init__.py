import importlib
import logging
from typing import Iterable

from hopper_server.handlers.health import perform_health_check
from hopper_server.queues.registry import HandlerRegistry
from hopper_server.schemas.jobs import JobType

logger = logging.getLogger(__name__)


def default_registry(handler_modules: Iterable[str] = ()) -> HandlerRegistry:
    """Registry with the built-in handlers plus any deployment modules.

    Media, connector and analytics handlers live with the services that own
    them. Each module named in handler_modules must expose
    ``register(registry)``.
    """
    registry = HandlerRegistry()
    registry.register(JobType.HEALTH_CHECK, perform_health_check)

    for module_name in handler_modules:
        module = importlib.import_module(module_name)
        register = getattr(module, "register", None)
        if register is None:
            raise ImportError(f"Handler module {module_name} has no register(registry) function")
        register(registry)
        logger.info(f"Loaded handlers from {module_name}")

    return registry


__all__ = ["default_registry", "perform_health_check"]
