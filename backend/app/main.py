"""
Service entry point.

Run with:
    python -m backend.app.main

Environment (or .env):
    CONFIG_PATH   path to the YAML client config (default ./config/dev.yaml)
    LOG_PRESET    dev | prod
    LOG_LEVEL     overrides the preset level
    SERVICE_NAME  / ENVIRONMENT  stamped on every log line
"""

from __future__ import annotations

import sys
from typing import Optional

from backend.app.bootstrap import close_clients, init_clients
from backend.app.clients.registry import ClientRegistry
from backend.app.core.config import Settings, get_settings
from backend.app.core.errors import ServiceError
from backend.app.core.health import run_health_check
from backend.app.core.logging_config import LogConfig, get_logger, init_logging, preset

logger = get_logger(__name__)


def log_config_from_settings(settings: Settings) -> LogConfig:
    """Pick the preset and apply the per-process overrides."""
    update = {
        "service_name": settings.SERVICE_NAME,
        "environment": settings.ENVIRONMENT,
    }
    if settings.LOG_LEVEL:
        update["level"] = settings.LOG_LEVEL
    return preset(settings.LOG_PRESET).model_copy(update=update)


def main(settings: Optional[Settings] = None) -> int:
    settings = settings or get_settings()

    # ── Initialise logging before anything else logs ──
    try:
        log_config = log_config_from_settings(settings)
    except ValueError as e:
        print(f"Invalid logging configuration: {e}", file=sys.stderr)
        return 1
    init_logging(log_config)

    logger.info("Starting %s [%s]", settings.SERVICE_NAME, settings.ENVIRONMENT)

    registry = ClientRegistry()
    try:
        clients = init_clients(settings.CONFIG_PATH, registry)
    except ServiceError as e:
        logger.critical("Client initialisation failed: %s", e, extra={"fields": e.to_dict()})
        try:
            registry.close_all()
        except Exception:
            logger.exception("Closing partially initialised clients failed")
        return 1

    try:
        report = run_health_check(registry)
        logger.info("Clients ready: %s", report.status.value, extra={"fields": report.to_dict()})
    finally:
        close_clients(clients)

    logger.info("Shutting down %s", settings.SERVICE_NAME)
    return 0


if __name__ == "__main__":
    sys.exit(main())
