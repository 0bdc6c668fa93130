"""
MySQL client — a SQLAlchemy engine over PyMySQL.

Pool sizing follows the config: max_idle_conns connections are kept,
up to max_open_conns in total, and each is recycled after max_lifetime
minutes. Zero leaves the SQLAlchemy default in place.

Probe: SELECT 1 on a pooled connection. Close: dispose the engine.
"""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine

from backend.app.clients.registry import (
    PROBE_TIMEOUT_SECONDS,
    ClientFactory,
    ClientHandle,
    ClientRegistry,
)
from backend.app.core.config import MySQLConfig

KIND = "mysql"
DEFAULT_CHARSET = "utf8mb4"

# SQLAlchemy QueuePool defaults
DEFAULT_POOL_SIZE = 5
DEFAULT_MAX_OVERFLOW = 10


def build_url(config: MySQLConfig) -> URL:
    return URL.create(
        "mysql+pymysql",
        username=config.user,
        password=config.password or None,
        host=config.host,
        port=config.port,
        database=config.database,
        query={"charset": config.charset or DEFAULT_CHARSET},
    )


def engine_kwargs(config: MySQLConfig) -> Dict[str, Any]:
    pool_size = config.max_idle_conns if config.max_idle_conns > 0 else DEFAULT_POOL_SIZE
    if config.max_open_conns > 0:
        pool_size = min(pool_size, config.max_open_conns)
        max_overflow = config.max_open_conns - pool_size
    else:
        max_overflow = DEFAULT_MAX_OVERFLOW

    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_recycle": config.max_lifetime * 60 if config.max_lifetime > 0 else -1,
        "pool_pre_ping": True,
        "pool_timeout": PROBE_TIMEOUT_SECONDS,
        "connect_args": {"connect_timeout": int(PROBE_TIMEOUT_SECONDS)},
    }


def create_client(config: MySQLConfig) -> Engine:
    return create_engine(build_url(config), **engine_kwargs(config))


def probe(engine: Engine, timeout: float) -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1")).scalar()


def close(engine: Engine) -> None:
    engine.dispose()


FACTORY: ClientFactory[MySQLConfig, Engine] = ClientFactory(
    kind=KIND,
    construct=create_client,
    probe=probe,
    close=close,
)


def get_mysql_client(registry: ClientRegistry, config: MySQLConfig) -> ClientHandle[Engine]:
    """Return the registry's MySQL handle, connecting on first use."""
    return registry.acquire(FACTORY, config)
