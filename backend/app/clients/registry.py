"""
Client registry — connect, probe and cache vendor client handles.

A ClientFactory describes one vendor kind by three capabilities:
construct(config) -> client, probe(client, timeout) and close(client).
ClientRegistry.acquire() runs them in order and keeps the first
successful handle for each kind for the lifetime of the registry:

    • cached handle present  → returned as is, no re-dial, config ignored
    • missing required field → ClientConnectionError, nothing dialled
    • construct/probe fails  → ClientConnectionError, cache untouched
    • success                → cached, logged, returned

The registry is created once by the entry point and passed down; there
is no module-level client state.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar

from backend.app.core.config import LeafConfig
from backend.app.core.errors import ClientConnectionError

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 5.0

C = TypeVar("C", bound=LeafConfig)
T = TypeVar("T")


@dataclass(frozen=True)
class ClientFactory(Generic[C, T]):
    kind: str
    construct: Callable[[C], T]
    probe: Callable[[T, float], Any]
    close: Callable[[T], Any]
    probe_timeout: float = PROBE_TIMEOUT_SECONDS


class ClientHandle(Generic[T]):
    """A live vendor client plus the means to probe and close it."""

    def __init__(self, factory: ClientFactory[Any, T], client: Optional[T]):
        self.factory = factory
        self.client = client
        self._closed = client is None

    @property
    def kind(self) -> str:
        return self.factory.kind

    @property
    def closed(self) -> bool:
        return self._closed

    def probe(self) -> None:
        if self.client is None:
            raise ClientConnectionError(self.kind, "no client")
        run_probe(self.factory, self.client)

    def close(self) -> None:
        """Close the vendor client. Repeated calls and empty handles are no-ops."""
        if self._closed:
            return
        self._closed = True
        self.factory.close(self.client)

    def __enter__(self) -> "ClientHandle[T]":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<ClientHandle {self.kind} {state}>"


def close_handle(handle: Optional[ClientHandle[Any]]) -> None:
    """Close a handle that may never have been acquired."""
    if handle is not None:
        handle.close()


def run_probe(factory: ClientFactory[Any, T], client: T) -> None:
    """
    Run factory.probe under a hard deadline.

    The probe gets the timeout so vendors that support one can honour it;
    the daemon thread bounds the ones that do not.
    """
    outcome: Dict[str, BaseException] = {}

    def _target() -> None:
        try:
            factory.probe(client, factory.probe_timeout)
        except Exception as e:
            outcome["error"] = e

    worker = threading.Thread(target=_target, name=f"{factory.kind}-probe", daemon=True)
    worker.start()
    worker.join(factory.probe_timeout)

    if worker.is_alive():
        raise TimeoutError(f"probe did not complete within {factory.probe_timeout:.1f}s")
    if "error" in outcome:
        raise outcome["error"]


def connect(factory: ClientFactory[C, T], config: C) -> ClientHandle[T]:
    """Construct and probe a client. No caching, no retry."""
    missing = config.missing_fields()
    if missing:
        raise ClientConnectionError(
            factory.kind, f"missing required config: {', '.join(missing)}",
            missing=list(missing),
        )

    try:
        client = factory.construct(config)
    except Exception as e:
        raise ClientConnectionError(factory.kind, f"create client failed: {e}") from e

    try:
        run_probe(factory, client)
    except Exception as e:
        try:
            factory.close(client)
        except Exception:
            logger.debug("%s: close after failed probe also failed", factory.kind, exc_info=True)
        raise ClientConnectionError(factory.kind, f"connectivity probe failed: {e}") from e

    return ClientHandle(factory, client)


class ClientRegistry:
    """
    At most one live handle per client kind.

    The populate-if-absent step runs under a lock, so concurrent first
    callers for the same kind end up sharing a single handle.
    """

    def __init__(self) -> None:
        self._handles: Dict[str, ClientHandle[Any]] = {}
        self._lock = threading.Lock()

    def acquire(self, factory: ClientFactory[C, T], config: C) -> ClientHandle[T]:
        with self._lock:
            existing = self._handles.get(factory.kind)
            if existing is not None and not existing.closed:
                return existing

            start = time.perf_counter()
            handle = connect(factory, config)
            self._handles[factory.kind] = handle

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s client initialised (%.1fms)", factory.kind, duration_ms,
            extra={"fields": {"service": factory.kind, "duration_ms": round(duration_ms, 1)}},
        )
        return handle

    def get(self, kind: str) -> Optional[ClientHandle[Any]]:
        with self._lock:
            return self._handles.get(kind)

    def items(self) -> List[Tuple[str, ClientHandle[Any]]]:
        with self._lock:
            return list(self._handles.items())

    def close_all(self) -> None:
        """
        Close every handle, most recently acquired first.

        All handles are attempted; the first error is re-raised afterwards.
        """
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()

        first_error: Optional[Exception] = None
        for handle in reversed(handles):
            try:
                handle.close()
            except Exception as e:
                logger.error("Closing %s client failed: %s", handle.kind, e)
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def __contains__(self, kind: object) -> bool:
        with self._lock:
            return kind in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._handles))
