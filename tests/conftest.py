"""Shared fixtures: YAML config files, fake client factories, logging reset."""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable, List
from unittest.mock import MagicMock

import pytest

from backend.app.clients.registry import ClientFactory
from backend.app.core.logging_config import clear_context, reset_logging

FULL_YAML = """
influxdb:
  host: http://influx.local:8181
  token: secret-token
  database: metrics

minio:
  endpoint: minio.local:9000
  access_key_id: AKIA123
  secret_access_key: s3cr3t
  use_ssl: true
  region: eu-west-1

mysql:
  host: db.local
  port: 3307
  user: svc
  password: pw
  database: app
  charset: utf8mb4
  max_open_conns: 20
  max_idle_conns: 5
  max_lifetime: 30
"""


@pytest.fixture
def write_yaml(tmp_path: Path) -> Callable[[str], Path]:
    def _write(body: str, name: str = "config.yaml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def full_config_path(write_yaml) -> Path:
    return write_yaml(FULL_YAML)


class FakeVendor:
    """Records every construct / probe / close call for one client kind."""

    def __init__(self, kind: str, fail_probe: bool = False, fail_construct: bool = False):
        self.kind = kind
        self.fail_probe = fail_probe
        self.fail_construct = fail_construct
        self.constructed: List[object] = []
        self.probed: List[float] = []
        self.closed: List[object] = []

    def construct(self, config):
        if self.fail_construct:
            raise ValueError("bad endpoint")
        client = MagicMock(name=f"{self.kind}-client")
        client.config = config
        self.constructed.append(client)
        return client

    def probe(self, client, timeout):
        self.probed.append(timeout)
        if self.fail_probe:
            raise ConnectionRefusedError("connection refused")

    def close(self, client):
        self.closed.append(client)

    def factory(self, probe_timeout: float = 5.0) -> ClientFactory:
        return ClientFactory(
            kind=self.kind,
            construct=self.construct,
            probe=self.probe,
            close=self.close,
            probe_timeout=probe_timeout,
        )


@pytest.fixture
def fake_vendor() -> Callable[..., FakeVendor]:
    return FakeVendor


@pytest.fixture
def fake_factories(monkeypatch):
    """Swap the three vendor factories for fakes; returns {kind: FakeVendor}."""
    from backend.app.clients import objectstore, relational, timeseries

    vendors = {}
    for module in (timeseries, objectstore, relational):
        vendor = FakeVendor(module.KIND)
        monkeypatch.setattr(module, "FACTORY", vendor.factory())
        vendors[module.KIND] = vendor
    return vendors


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    reset_logging()
    clear_context()
