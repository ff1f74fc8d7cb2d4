"""
Connection pool for the active backend.

Bounded to ``size`` live connections with a bounded FIFO wait queue.
Includes health-check on checkout, max-age eviction, idle trimming down to
a floor, and force-reclaim of leaked connections.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, NamedTuple

from dbanchor.core.config import settings
from dbanchor.core.exceptions import PoolClosedError, PoolExhausted
from dbanchor.models import BackendDescriptor

from .connect import close_quiet, connect
from .health import health_check

_log = logging.getLogger(__name__)

_MAX_REAP_INTERVAL = 30.0


class _PoolEntry(NamedTuple):
    conn: Any
    created_at: float  # clock() when the connection was opened
    last_used: float  # clock() when last returned to pool


class _Lease:
    __slots__ = ("conn", "created_at", "acquired_at", "owner", "flagged")

    def __init__(self, conn: Any, created_at: float, acquired_at: float, owner: str) -> None:
        self.conn = conn
        self.created_at = created_at
        self.acquired_at = acquired_at
        self.owner = owner
        self.flagged = False


class PoolManager:
    """Bounded, thread-safe pool of connections to one backend descriptor."""

    def __init__(
        self,
        descriptor: BackendDescriptor,
        *,
        size: int | None = None,
        min_idle: int | None = None,
        max_waiters: int | None = None,
        acquire_timeout: float | None = None,
        idle_timeout: float | None = None,
        max_age: float | None = None,
        leak_timeout: float | None = None,
        leak_grace: float | None = None,
        connect_fn: Callable[..., Any] = connect,
        clock: Callable[[], float] = time.monotonic,
        start_reaper: bool = True,
    ) -> None:
        self._descriptor = descriptor
        self._size = settings.DB_POOL_SIZE if size is None else size
        if self._size < 1:
            raise ValueError("pool size must be at least 1")
        self._min_idle = min(
            settings.DB_POOL_MIN_IDLE if min_idle is None else min_idle, self._size
        )
        self._max_waiters = (
            settings.DB_POOL_MAX_WAITERS if max_waiters is None else max_waiters
        )
        self._acquire_timeout = (
            settings.DB_ACQUIRE_TIMEOUT if acquire_timeout is None else acquire_timeout
        )
        self._idle_timeout = (
            settings.DB_IDLE_TIMEOUT if idle_timeout is None else idle_timeout
        )
        self._max_age = settings.DB_POOL_MAX_AGE_SEC if max_age is None else max_age
        self._leak_timeout = (
            settings.DB_LEAK_TIMEOUT if leak_timeout is None else leak_timeout
        )
        self._leak_grace = settings.DB_LEAK_GRACE if leak_grace is None else leak_grace
        self._connect_fn = connect_fn
        self._clock = clock

        self._cond = threading.Condition()
        self._idle: deque[_PoolEntry] = deque()  # oldest left, newest right
        self._leases: dict[int, _Lease] = {}
        self._waiters: deque[object] = deque()
        self._live = 0  # idle + leased + being opened
        self._closed = False
        self._leaks_reclaimed = 0

        self._stop = threading.Event()
        self._reaper: threading.Thread | None = None
        if start_reaper:
            self._start_reaper()

    @property
    def descriptor(self) -> BackendDescriptor:
        return self._descriptor

    @property
    def size(self) -> int:
        return self._size

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Checkout / checkin
    # ------------------------------------------------------------------

    def acquire(self, timeout: float | None = None) -> Any:
        """
        Hand out a healthy connection owned by the caller until ``release``.

        Blocks until a connection is idle or a slot is free; raises
        PoolExhausted once ``timeout`` seconds have passed. The bound covers
        the checkout ping and opening a new connection too.
        """
        timeout = self._acquire_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        ticket = object()
        with self._cond:
            if self._closed:
                raise PoolClosedError(f"pool for {self._descriptor.name} is closed")
            available = not self._waiters and (
                bool(self._idle) or self._live < self._size
            )
            if not available and len(self._waiters) >= self._max_waiters:
                raise PoolExhausted(
                    timeout, f"wait queue full ({self._max_waiters} callers waiting)"
                )
            self._waiters.append(ticket)
            try:
                while True:
                    if self._closed:
                        raise PoolClosedError(
                            f"pool for {self._descriptor.name} is closed"
                        )
                    if self._waiters[0] is ticket:
                        if self._idle:
                            entry: _PoolEntry | None = self._idle.pop()
                            break
                        if self._live < self._size:
                            self._live += 1
                            entry = None
                            break
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise PoolExhausted(timeout)
                    self._cond.wait(remaining)
            finally:
                self._waiters.remove(ticket)
                self._cond.notify_all()

        # The slot is ours (counted in _live); validate or open outside the lock.
        conn, created_at = self._checkout_within(entry, deadline, timeout)
        with self._cond:
            self._leases[id(conn)] = _Lease(
                conn, created_at, self._clock(), threading.current_thread().name
            )
        return conn

    def release(self, conn: Any) -> None:
        """Return a connection to the pool (or close it if it is unusable)."""
        with self._cond:
            lease = self._leases.pop(id(conn), None)
        if lease is None:
            _log.warning(
                "Released a connection %s does not own (already reclaimed?)",
                self._descriptor.name,
            )
            return

        try:
            conn.rollback()
        except Exception:
            self._discard(conn)
            return
        self._give_back(conn, lease.created_at)

    @contextmanager
    def connection(self, timeout: float | None = None) -> Iterator[Any]:
        conn = self.acquire(timeout)
        try:
            yield conn
        finally:
            self.release(conn)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def warm(self) -> int:
        """Open connections until ``min_idle`` are idle. Best effort."""
        opened = 0
        while True:
            with self._cond:
                if (
                    self._closed
                    or len(self._idle) >= self._min_idle
                    or self._live >= self._size
                ):
                    return opened
                self._live += 1
            try:
                conn = self._open()
            except Exception as e:
                with self._cond:
                    self._live -= 1
                    self._cond.notify_all()
                _log.warning("Pool warm-up for %s failed: %s", self._descriptor.name, e)
                return opened
            now = self._clock()
            with self._cond:
                self._idle.append(_PoolEntry(conn, now, now))
                self._cond.notify_all()
            opened += 1

    def reap(self) -> dict[str, int]:
        """
        Close idle connections above the floor that sat unused past
        ``idle_timeout`` (and any past ``max_age``); flag and then
        force-reclaim leases held past ``leak_timeout`` + ``leak_grace``.
        """
        now = self._clock()
        to_close: list[Any] = []
        flagged: list[tuple[_Lease, float]] = []
        reclaimed: list[tuple[_Lease, float]] = []
        with self._cond:
            excess = len(self._idle) - self._min_idle
            kept: deque[_PoolEntry] = deque()
            for entry in self._idle:
                if now - entry.created_at > self._max_age or (
                    excess > 0 and now - entry.last_used > self._idle_timeout
                ):
                    to_close.append(entry.conn)
                    excess -= 1
                else:
                    kept.append(entry)
            idle_closed = len(to_close)
            self._idle = kept
            self._live -= idle_closed

            for key, lease in list(self._leases.items()):
                held = now - lease.acquired_at
                if held > self._leak_timeout + self._leak_grace:
                    del self._leases[key]
                    self._live -= 1
                    self._leaks_reclaimed += 1
                    to_close.append(lease.conn)
                    reclaimed.append((lease, held))
                elif held > self._leak_timeout and not lease.flagged:
                    lease.flagged = True
                    flagged.append((lease, held))
            if to_close:
                self._cond.notify_all()

        for lease, held in flagged:
            _log.warning(
                "Connection to %s held for %.0fs by %s; force-reclaim in %.0fs unless released",
                self._descriptor.name,
                held,
                lease.owner,
                self._leak_timeout + self._leak_grace - held,
            )
        for lease, held in reclaimed:
            _log.error(
                "Leaked connection to %s force-reclaimed after %.0fs (acquired by %s); "
                "the caller never released it",
                self._descriptor.name,
                held,
                lease.owner,
            )
        for conn in to_close:
            close_quiet(conn)
        return {"idle_closed": idle_closed, "leaks_reclaimed": len(reclaimed)}

    def close(self, drain_timeout: float = 0.0) -> None:
        """
        Stop handing out connections, wait up to ``drain_timeout`` for
        in-use connections to come back, then close everything.
        """
        deadline = time.monotonic() + drain_timeout
        with self._cond:
            self._closed = True
            self._cond.notify_all()
            while self._leases:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cond.wait(remaining)
            idle = [e.conn for e in self._idle]
            self._idle.clear()
            leftover = list(self._leases.values())
            self._leases.clear()
            self._live -= len(idle) + len(leftover)
        self._stop.set()
        for lease in leftover:
            _log.warning(
                "Closing connection to %s still held by %s after drain",
                self._descriptor.name,
                lease.owner,
            )
        for conn in idle + [lease.conn for lease in leftover]:
            close_quiet(conn)

    def stats(self) -> dict[str, Any]:
        """Return pool statistics for monitoring."""
        with self._cond:
            return {
                "backend": self._descriptor.name,
                "size": self._size,
                "live": self._live,
                "idle": len(self._idle),
                "in_use": len(self._leases),
                "waiters": len(self._waiters),
                "leaks_reclaimed": self._leaks_reclaimed,
                "closed": self._closed,
            }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open(self, timeout: float | None = None) -> Any:
        return self._connect_fn(
            self._descriptor,
            timeout=self._acquire_timeout if timeout is None else timeout,
        )

    def _checkout_within(
        self, entry: _PoolEntry | None, deadline: float, timeout: float
    ) -> tuple[Any, float]:
        """
        Run ``_checkout`` in a daemon thread and wait for it until *deadline*.

        A checkout that outlives the deadline raises PoolExhausted here; the
        worker then returns its connection (or the slot) to the pool itself.
        """
        outcome: dict[str, Any] = {}
        state = {"abandoned": False}
        done = threading.Event()
        lock = threading.Lock()

        def _attempt() -> None:
            try:
                outcome["result"] = self._checkout(entry, deadline, timeout)
            except BaseException as e:
                outcome["error"] = e
            with lock:
                done.set()
                late = state["abandoned"]
            if not late:
                return
            if "result" in outcome:
                conn, created_at = outcome["result"]
                self._give_back(conn, created_at)
            else:
                self._free_slot()

        threading.Thread(
            target=_attempt, name=f"pool-checkout-{self._descriptor.name}", daemon=True
        ).start()
        done.wait(max(0.0, deadline - time.monotonic()))
        with lock:
            if not done.is_set():
                state["abandoned"] = True
        if state["abandoned"]:
            _log.warning(
                "Checkout from %s did not finish within %.3fs", self._descriptor.name, timeout
            )
            raise PoolExhausted(timeout)
        if "error" in outcome:
            self._free_slot()
            raise outcome["error"]
        return outcome["result"]

    def _checkout(
        self, entry: _PoolEntry | None, deadline: float, timeout: float
    ) -> tuple[Any, float]:
        if entry is not None:
            if not self._too_old(entry.created_at) and health_check(
                entry.conn, self._descriptor.dialect
            ):
                return entry.conn, entry.created_at
            _log.debug("Replacing stale connection to %s", self._descriptor.name)
            close_quiet(entry.conn)
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise PoolExhausted(timeout)
        return self._open(remaining), self._clock()

    def _give_back(self, conn: Any, created_at: float) -> None:
        """Put a usable connection back on the idle list, or close it."""
        with self._cond:
            if not self._closed and not self._too_old(created_at):
                self._idle.append(_PoolEntry(conn, created_at, self._clock()))
                self._cond.notify_all()
                return
        self._discard(conn)

    def _discard(self, conn: Any) -> None:
        self._free_slot()
        close_quiet(conn)

    def _free_slot(self) -> None:
        with self._cond:
            self._live -= 1
            self._cond.notify_all()

    def _too_old(self, created_at: float) -> bool:
        return (self._clock() - created_at) > self._max_age

    def _start_reaper(self) -> None:
        interval = max(0.5, min(_MAX_REAP_INTERVAL, self._idle_timeout / 2, self._leak_grace))
        self._reaper = threading.Thread(
            target=self._reap_loop,
            args=(interval,),
            name=f"pool-reaper-{self._descriptor.name}",
            daemon=True,
        )
        self._reaper.start()

    def _reap_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.reap()
            except Exception:
                _log.exception("Pool reaper for %s failed", self._descriptor.name)
