"""
Health check aggregation — re-probe every connected backing service.

Returns a structured health report suitable for:
    - readiness probes after bootstrap
    - periodic monitoring from a supervisor
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from backend.app.clients.registry import ClientHandle, ClientRegistry

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    timestamp: str = ""
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "components": [c.to_dict() for c in self.components],
        }


def check_client(handle: ClientHandle[Any]) -> ComponentHealth:
    """Re-run a handle's connectivity probe."""
    comp = ComponentHealth(name=handle.kind)
    start = time.monotonic()
    if handle.closed:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "client closed"
    else:
        try:
            handle.probe()
            comp.message = "reachable"
        except Exception as e:
            comp.status = HealthStatus.UNHEALTHY
            comp.message = str(e)
            logger.warning("Health probe failed for %s: %s", handle.kind, e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def run_health_check(registry: ClientRegistry) -> HealthReport:
    """Run all client probes and aggregate into a report."""
    report = HealthReport(timestamp=datetime.now(timezone.utc).isoformat())

    for _, handle in registry.items():
        report.components.append(check_client(handle))

    if any(c.status is HealthStatus.UNHEALTHY for c in report.components):
        report.status = HealthStatus.UNHEALTHY

    return report
