"""
Backend selection.

Descriptors are probed strictly in priority order; the first healthy one is
bound to a pool and held as the process-wide BackendHandle. The handle only
changes through an explicit ``reconnect()``.

    selector = BackendSelector.from_settings(settings)
    handle = selector.resolve()
    with handle.connection() as conn:
        ...
"""

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from dbanchor.core.config import Settings, settings
from dbanchor.core.descriptors import load_descriptors
from dbanchor.core.dialects import DialectAdapter, get_adapter
from dbanchor.core.exceptions import ConfigurationError, NoBackendAvailable
from dbanchor.core.pool import PoolManager, probe
from dbanchor.models import BackendDescriptor, DialectEnum, ProbeResult

logger = logging.getLogger(__name__)

PoolFactory = Callable[[BackendDescriptor], PoolManager]
ProbeFn = Callable[[BackendDescriptor, float], ProbeResult]


@dataclass
class BackendHandle:
    """The live binding to the chosen backend: descriptor, pool and adapter."""

    descriptor: BackendDescriptor
    pool: PoolManager
    adapter: DialectAdapter
    probes: list[ProbeResult] = field(default_factory=list)
    resolved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def dialect(self) -> DialectEnum:
        return self.descriptor.dialect

    def connection(self, timeout: float | None = None) -> Any:
        return self.pool.connection(timeout)

    def describe(self) -> dict[str, Any]:
        return {
            "backend": self.descriptor.public_dict(),
            "resolved_at": self.resolved_at.isoformat(),
            "probes": [p.model_dump(mode="json") for p in self.probes],
            "pool": self.pool.stats(),
        }

    def close(self, drain_timeout: float = 0.0) -> None:
        self.pool.close(drain_timeout)


def build_pool(descriptor: BackendDescriptor, cfg: Settings = settings) -> PoolManager:
    return PoolManager(
        descriptor,
        size=cfg.DB_POOL_SIZE,
        min_idle=cfg.DB_POOL_MIN_IDLE,
        max_waiters=cfg.DB_POOL_MAX_WAITERS,
        acquire_timeout=cfg.DB_ACQUIRE_TIMEOUT,
        idle_timeout=cfg.DB_IDLE_TIMEOUT,
        max_age=cfg.DB_POOL_MAX_AGE_SEC,
        leak_timeout=cfg.DB_LEAK_TIMEOUT,
        leak_grace=cfg.DB_LEAK_GRACE,
    )


class BackendSelector:
    """Owns the BackendHandle for the process lifetime."""

    def __init__(
        self,
        descriptors: Sequence[BackendDescriptor],
        *,
        probe_timeout: float | None = None,
        pool_factory: PoolFactory | None = None,
        probe_fn: ProbeFn = probe,
        drain_timeout: float | None = None,
    ) -> None:
        if not descriptors:
            raise ConfigurationError("no backend descriptors to select from")
        self._descriptors = tuple(sorted(descriptors, key=lambda d: d.priority))
        self._probe_timeout = (
            settings.DB_PROBE_TIMEOUT if probe_timeout is None else probe_timeout
        )
        self._pool_factory = pool_factory or build_pool
        self._probe_fn = probe_fn
        self._drain_timeout = (
            settings.DB_ACQUIRE_TIMEOUT if drain_timeout is None else drain_timeout
        )
        self._lock = threading.Lock()
        self._handle: BackendHandle | None = None

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "BackendSelector":
        return cls(
            load_descriptors(cfg),
            probe_timeout=cfg.DB_PROBE_TIMEOUT,
            pool_factory=lambda d: build_pool(d, cfg),
            drain_timeout=cfg.DB_ACQUIRE_TIMEOUT,
        )

    @property
    def descriptors(self) -> tuple[BackendDescriptor, ...]:
        return self._descriptors

    @property
    def handle(self) -> BackendHandle | None:
        """The resolved handle, or None before ``resolve()``."""
        return self._handle

    def resolve(self) -> BackendHandle:
        """
        Return the process-wide handle, probing descriptors on first call.

        Raises NoBackendAvailable if every descriptor is unhealthy; a later
        call probes again since nothing was committed.
        """
        with self._lock:
            if self._handle is None:
                descriptor, probes = self._first_healthy()
                self._handle = self._bind(descriptor, probes)
                logger.info(
                    "Selected backend %s (priority %d) after %d probe(s)",
                    descriptor.name,
                    descriptor.priority,
                    len(probes),
                )
            return self._handle

    def reconnect(self) -> BackendHandle:
        """
        Operator-triggered re-selection. The handle is replaced only when a
        different descriptor wins; the old pool is drained and closed first.
        When nothing is healthy the current handle stays and
        NoBackendAvailable is raised.
        """
        with self._lock:
            descriptor, probes = self._first_healthy()
            current = self._handle
            if current is not None and current.descriptor == descriptor:
                current.probes = probes
                logger.info("Reconnect: %s still preferred, keeping handle", descriptor.name)
                return current
            if current is not None:
                logger.warning(
                    "Reconnect: switching %s -> %s", current.descriptor.name, descriptor.name
                )
                current.close(self._drain_timeout)
            self._handle = self._bind(descriptor, probes)
            return self._handle

    def check_all(self) -> list[ProbeResult]:
        """Probe every descriptor (no short-circuit). Does not touch the handle."""
        return [self._probe_fn(d, self._probe_timeout) for d in self._descriptors]

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close(self._drain_timeout)
                self._handle = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _first_healthy(self) -> tuple[BackendDescriptor, list[ProbeResult]]:
        probes: list[ProbeResult] = []
        for descriptor in self._descriptors:
            result = self._probe_fn(descriptor, self._probe_timeout)
            probes.append(result)
            if result.healthy:
                return descriptor, probes
        logger.error("No backend available: %d descriptor(s) unhealthy", len(probes))
        raise NoBackendAvailable(probes)

    def _bind(
        self, descriptor: BackendDescriptor, probes: list[ProbeResult]
    ) -> BackendHandle:
        return BackendHandle(
            descriptor=descriptor,
            pool=self._pool_factory(descriptor),
            adapter=get_adapter(descriptor.dialect),
            probes=probes,
        )
