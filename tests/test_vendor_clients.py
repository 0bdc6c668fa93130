"""
Tests for the InfluxDB, MinIO and MySQL bindings.

Vendor constructors are patched where a live server would be needed;
the unreachable-endpoint cases dial a closed local port for real.
"""

from __future__ import annotations

import socket
import time
from unittest.mock import MagicMock, patch

import pytest

from backend.app.clients import objectstore, relational, timeseries
from backend.app.clients.registry import PROBE_TIMEOUT_SECONDS, ClientRegistry
from backend.app.core.config import InfluxDBConfig, MinIOConfig, MySQLConfig
from backend.app.core.errors import ClientConnectionError


def _closed_port() -> int:
    """A local port nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


INFLUX = InfluxDBConfig(host="http://influx:8181", token="tok", database="metrics")
MINIO = MinIOConfig(
    endpoint="minio:9000", access_key_id="ak", secret_access_key="sk", use_ssl=True, region="eu-west-1",
)
MYSQL = MySQLConfig(
    host="db", port=3306, user="svc", password="pw", database="app",
    charset="", max_open_conns=20, max_idle_conns=5, max_lifetime=30,
)


# ═══════════════════════════════════════════════════════════════════════════
# InfluxDB
# ═══════════════════════════════════════════════════════════════════════════

class TestInfluxDB:
    def test_construct_args(self):
        with patch.object(timeseries, "InfluxDBClient3") as cls:
            timeseries.create_client(INFLUX)
        cls.assert_called_once_with(host="http://influx:8181", token="tok", database="metrics")

    def test_empty_token_passed_as_none(self):
        with patch.object(timeseries, "InfluxDBClient3") as cls:
            timeseries.create_client(InfluxDBConfig(host="h", database="d"))
        assert cls.call_args.kwargs["token"] is None

    def test_probe_runs_trivial_query(self):
        client = MagicMock()
        timeseries.probe(client, 5.0)
        client.query.assert_called_once_with(query="SELECT 1", language="sql")

    def test_acquire_is_singleton(self):
        registry = ClientRegistry()
        with patch.object(timeseries, "InfluxDBClient3") as cls:
            first = timeseries.get_influxdb_client(registry, INFLUX)
            second = timeseries.get_influxdb_client(registry, InfluxDBConfig(host="x", database="y"))
        assert first is second
        assert cls.call_count == 1
        assert first.client is cls.return_value

    def test_query_failure(self):
        with patch.object(timeseries, "InfluxDBClient3") as cls:
            cls.return_value.query.side_effect = OSError("flight unavailable")
            with pytest.raises(ClientConnectionError) as exc_info:
                timeseries.get_influxdb_client(ClientRegistry(), INFLUX)
        assert exc_info.value.service == "influxdb"
        cls.return_value.close.assert_called_once()

    def test_close(self):
        with patch.object(timeseries, "InfluxDBClient3") as cls:
            handle = timeseries.get_influxdb_client(ClientRegistry(), INFLUX)
        handle.close()
        handle.close()
        cls.return_value.close.assert_called_once()

    def test_unreachable_endpoint(self):
        cfg = INFLUX.model_copy(update={"host": f"http://127.0.0.1:{_closed_port()}"})
        registry = ClientRegistry()
        start = time.monotonic()
        with pytest.raises(ClientConnectionError) as exc_info:
            timeseries.get_influxdb_client(registry, cfg)
        assert time.monotonic() - start < PROBE_TIMEOUT_SECONDS + 1
        assert exc_info.value.service == "influxdb"
        assert "influxdb" not in registry


# ═══════════════════════════════════════════════════════════════════════════
# MinIO
# ═══════════════════════════════════════════════════════════════════════════

class TestMinIO:
    def test_construct_args(self):
        with patch.object(objectstore, "Minio") as cls:
            objectstore.create_client(MINIO)
        args, kwargs = cls.call_args
        assert args == ("minio:9000",)
        assert kwargs["access_key"] == "ak"
        assert kwargs["secret_key"] == "sk"
        assert kwargs["secure"] is True
        assert kwargs["region"] == "eu-west-1"
        assert kwargs["http_client"] is not None

    def test_empty_region_is_none(self):
        with patch.object(objectstore, "Minio") as cls:
            objectstore.create_client(MINIO.model_copy(update={"region": ""}))
        assert cls.call_args.kwargs["region"] is None

    def test_http_pool_is_bounded(self):
        pool = objectstore._http_pool(PROBE_TIMEOUT_SECONDS)
        assert pool.connection_pool_kw["timeout"].connect_timeout == PROBE_TIMEOUT_SECONDS
        assert pool.connection_pool_kw["retries"].total == 0

    def test_probe_lists_buckets(self):
        client = MagicMock()
        objectstore.probe(client, 5.0)
        client.list_buckets.assert_called_once_with()

    def test_acquire_is_singleton(self):
        registry = ClientRegistry()
        with patch.object(objectstore, "Minio") as cls:
            first = objectstore.get_minio_client(registry, MINIO)
            second = objectstore.get_minio_client(registry, MINIO)
        assert first is second
        assert cls.call_count == 1

    def test_close_clears_own_pool(self):
        with patch.object(objectstore, "Minio") as cls:
            client = objectstore.create_client(MINIO)
        pool = cls.call_args.kwargs["http_client"]

        with patch.object(pool, "clear") as clear:
            objectstore.close(client)
            objectstore.close(client)
        clear.assert_called_once_with()

    def test_close_unknown_client_is_noop(self):
        client = MagicMock()
        objectstore.close(client)
        client.assert_not_called()

    def test_invalid_endpoint_is_connection_error(self):
        bad = MINIO.model_copy(update={"endpoint": "http://minio:9000/path"})
        with pytest.raises(ClientConnectionError):
            objectstore.get_minio_client(ClientRegistry(), bad)

    def test_unreachable_endpoint(self):
        cfg = MINIO.model_copy(update={"endpoint": f"127.0.0.1:{_closed_port()}", "use_ssl": False})
        registry = ClientRegistry()
        start = time.monotonic()
        with pytest.raises(ClientConnectionError):
            objectstore.get_minio_client(registry, cfg)
        assert time.monotonic() - start < PROBE_TIMEOUT_SECONDS + 1
        assert "minio" not in registry


# ═══════════════════════════════════════════════════════════════════════════
# MySQL
# ═══════════════════════════════════════════════════════════════════════════

class TestMySQL:
    def test_url(self):
        url = relational.build_url(MYSQL)
        assert url.drivername == "mysql+pymysql"
        assert url.username == "svc"
        assert url.password == "pw"
        assert url.host == "db"
        assert url.port == 3306
        assert url.database == "app"
        assert url.query["charset"] == "utf8mb4"

    def test_explicit_charset(self):
        url = relational.build_url(MYSQL.model_copy(update={"charset": "latin1"}))
        assert url.query["charset"] == "latin1"

    def test_pool_sizing(self):
        kw = relational.engine_kwargs(MYSQL)
        assert kw["pool_size"] == 5
        assert kw["max_overflow"] == 15
        assert kw["pool_recycle"] == 30 * 60
        assert kw["connect_args"] == {"connect_timeout": 5}

    def test_pool_defaults_for_zero_values(self):
        kw = relational.engine_kwargs(MYSQL.model_copy(
            update={"max_open_conns": 0, "max_idle_conns": 0, "max_lifetime": 0},
        ))
        assert kw["pool_size"] == relational.DEFAULT_POOL_SIZE
        assert kw["max_overflow"] == relational.DEFAULT_MAX_OVERFLOW
        assert kw["pool_recycle"] == -1

    def test_idle_capped_by_open(self):
        kw = relational.engine_kwargs(MYSQL.model_copy(update={"max_open_conns": 3, "max_idle_conns": 10}))
        assert kw["pool_size"] == 3
        assert kw["max_overflow"] == 0

    def test_create_engine_does_not_connect(self):
        engine = relational.create_client(MYSQL)
        try:
            assert engine.pool.size() == 5
        finally:
            engine.dispose()

    def test_probe_selects_one(self):
        engine = MagicMock()
        conn = engine.connect.return_value.__enter__.return_value
        relational.probe(engine, 5.0)
        sql = conn.execute.call_args.args[0]
        assert str(sql) == "SELECT 1"

    def test_close_disposes(self):
        engine = MagicMock()
        relational.close(engine)
        engine.dispose.assert_called_once()

    def test_acquire_is_singleton(self):
        registry = ClientRegistry()
        with patch.object(relational, "create_engine") as create:
            first = relational.get_mysql_client(registry, MYSQL)
            second = relational.get_mysql_client(registry, MYSQL)
        assert first is second
        assert create.call_count == 1

    def test_unreachable_endpoint_then_corrected(self):
        registry = ClientRegistry()
        cfg = MYSQL.model_copy(update={"host": "127.0.0.1", "port": _closed_port()})

        start = time.monotonic()
        with pytest.raises(ClientConnectionError):
            relational.get_mysql_client(registry, cfg)
        assert time.monotonic() - start < PROBE_TIMEOUT_SECONDS + 1
        assert "mysql" not in registry

        with patch.object(relational, "create_engine") as create:
            handle = relational.get_mysql_client(registry, MYSQL)
        assert registry.get("mysql") is handle
        assert handle.client is create.return_value
