"""
Application bootstrap — wire the three backing-service clients.

init_clients() runs load → InfluxDB → MinIO → MySQL in order and stops at
the first failure; a partially connected holder is never returned.
close_clients() is its counterpart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from influxdb_client_3 import InfluxDBClient3
from minio import Minio
from sqlalchemy.engine import Engine

from backend.app.clients.objectstore import get_minio_client
from backend.app.clients.registry import ClientHandle, ClientRegistry
from backend.app.clients.relational import get_mysql_client
from backend.app.clients.timeseries import get_influxdb_client
from backend.app.core.config import AppConfig, load_config

logger = logging.getLogger(__name__)


@dataclass
class AppClients:
    """Live handles for every backing service."""

    influxdb: ClientHandle[InfluxDBClient3]
    minio: ClientHandle[Minio]
    mysql: ClientHandle[Engine]
    config: AppConfig
    registry: ClientRegistry = field(repr=False)


def init_clients(
    config_path: Union[str, Path, None] = None,
    registry: Optional[ClientRegistry] = None,
) -> AppClients:
    """
    Load configuration and connect every client, fail-fast.

    Raises whatever the first failing step raises (ConfigReadError,
    ConfigDecodeError or ClientConnectionError).
    """
    cfg = load_config(config_path)
    registry = registry if registry is not None else ClientRegistry()

    influxdb = get_influxdb_client(registry, cfg.influxdb)
    minio = get_minio_client(registry, cfg.minio)
    mysql = get_mysql_client(registry, cfg.mysql)

    return AppClients(
        influxdb=influxdb,
        minio=minio,
        mysql=mysql,
        config=cfg,
        registry=registry,
    )


def close_clients(clients: AppClients) -> None:
    """
    Close every held client in turn, then empty the registry.

    Every handle is attempted; the first close error is re-raised afterwards.
    """
    errors: List[Exception] = []
    for handle in (clients.influxdb, clients.minio, clients.mysql):
        try:
            handle.close()
        except Exception as e:
            logger.error("Closing %s client failed: %s", handle.kind, e)
            errors.append(e)

    try:
        clients.registry.close_all()
    except Exception as e:
        errors.append(e)

    if errors:
        raise errors[0]
    logger.info("Clients closed")
