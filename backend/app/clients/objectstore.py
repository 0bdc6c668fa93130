"""
MinIO object-store client.

Probe: list_buckets(). The client is handed its own urllib3 pool with a
bounded timeout and no retries, so an unreachable endpoint fails fast;
closing the handle releases that pool.
"""

from __future__ import annotations

import weakref

import urllib3
from minio import Minio

from backend.app.clients.registry import (
    PROBE_TIMEOUT_SECONDS,
    ClientFactory,
    ClientHandle,
    ClientRegistry,
)
from backend.app.core.config import MinIOConfig

KIND = "minio"

# The pool each client was built with, released on close
_pools: "weakref.WeakKeyDictionary[Minio, urllib3.PoolManager]" = weakref.WeakKeyDictionary()


def _http_pool(timeout: float) -> urllib3.PoolManager:
    return urllib3.PoolManager(
        timeout=urllib3.Timeout(connect=timeout, read=timeout),
        retries=urllib3.Retry(total=0),
    )


def create_client(config: MinIOConfig) -> Minio:
    pool = _http_pool(PROBE_TIMEOUT_SECONDS)
    client = Minio(
        config.endpoint,
        access_key=config.access_key_id,
        secret_key=config.secret_access_key,
        secure=config.use_ssl,
        region=config.region or None,
        http_client=pool,
    )
    _pools[client] = pool
    return client


def probe(client: Minio, timeout: float) -> None:
    client.list_buckets()


def close(client: Minio) -> None:
    # Minio has no close(); release the pool we gave it
    pool = _pools.pop(client, None)
    if pool is not None:
        pool.clear()


FACTORY: ClientFactory[MinIOConfig, Minio] = ClientFactory(
    kind=KIND,
    construct=create_client,
    probe=probe,
    close=close,
)


def get_minio_client(registry: ClientRegistry, config: MinIOConfig) -> ClientHandle[Minio]:
    """Return the registry's MinIO handle, connecting on first use."""
    return registry.acquire(FACTORY, config)
