"""
Centralised error handling — exception hierarchy for bootstrap failures.

Provides:
    • A base exception carrying message, error code and details
    • Configuration errors (read / decode)
    • Client connection errors (construction or connectivity probe)

Every error here is terminal at bootstrap: it is surfaced to the entry
point, logged, and the process exits.

Usage:
    from backend.app.core.errors import ClientConnectionError

    raise ClientConnectionError("mysql", "ping failed") from exc
"""

from __future__ import annotations

from typing import Any, Dict, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class ServiceError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.error_code, "message": self.message}
        if self.details:
            body["details"] = self.details
        if self.__cause__ is not None:
            body["cause"] = f"{type(self.__cause__).__name__}: {self.__cause__}"
        return body


class ConfigError(ServiceError):
    """Configuration could not be loaded."""


class ConfigReadError(ConfigError):
    """Config file missing or unreadable."""

    def __init__(self, path: str, message: str = ""):
        super().__init__(
            message=f"read config failed: {path}: {message}".rstrip(": "),
            error_code="CONFIG_READ_ERROR",
            details={"path": path},
        )


class ConfigDecodeError(ConfigError):
    """Config document does not match the expected shape."""

    def __init__(self, path: str, message: str = "", **details: Any):
        super().__init__(
            message=f"unmarshal config failed: {path}: {message}".rstrip(": "),
            error_code="CONFIG_DECODE_ERROR",
            details={"path": path, **details},
        )


class ClientConnectionError(ServiceError):
    """Client construction or connectivity probe failed."""

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            message=f"{service} connection failed: {message}",
            error_code="CONNECTION_ERROR",
            details={"service": service, **details},
        )
        self.service = service
