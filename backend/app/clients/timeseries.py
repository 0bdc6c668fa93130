"""
InfluxDB 3 time-series client.

Probe: a trivial SQL query. The Flight client owns its own connection,
so closing it is all teardown needs.
"""

from __future__ import annotations

from influxdb_client_3 import InfluxDBClient3

from backend.app.clients.registry import ClientFactory, ClientHandle, ClientRegistry
from backend.app.core.config import InfluxDBConfig

KIND = "influxdb"
PROBE_QUERY = "SELECT 1"


def create_client(config: InfluxDBConfig) -> InfluxDBClient3:
    return InfluxDBClient3(
        host=config.host,
        token=config.token or None,
        database=config.database,
    )


def probe(client: InfluxDBClient3, timeout: float) -> None:
    client.query(query=PROBE_QUERY, language="sql")


def close(client: InfluxDBClient3) -> None:
    client.close()


FACTORY: ClientFactory[InfluxDBConfig, InfluxDBClient3] = ClientFactory(
    kind=KIND,
    construct=create_client,
    probe=probe,
    close=close,
)


def get_influxdb_client(
    registry: ClientRegistry, config: InfluxDBConfig,
) -> ClientHandle[InfluxDBClient3]:
    """Return the registry's InfluxDB handle, connecting on first use."""
    return registry.acquire(FACTORY, config)
