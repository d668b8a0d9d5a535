"""Bounded session pool.

``SessionPool`` keeps a client's sessions alive and hands them out:

    acquire() → reuse an available session, or create one if under ``max``,
                else wait for a session still being created or pinged,
                else raise (``fail=True``) or wait for a release
    release() → return to the available set; invalid sessions are dropped
                and replaced in the background, and plain sessions begin a
                new transaction while fewer than ``min * write_ratio`` are
                available

A sweep thread pings sessions idle longer than ``keepalive`` so the service
does not expire them, and deletes idle sessions above ``min``.  All pool
state is guarded by one lock; remote calls are always made outside it.
"""

from __future__ import annotations

import concurrent.futures
import logging
import os
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import Any, Callable, Iterator, Mapping, Optional

from cloudbind.core.exceptions import ClientClosedError, ConfigurationError, SessionLimitError
from cloudbind.spanner.session import Session

logger = logging.getLogger("cloudbind.spanner.pool")


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


def _default_threads() -> int:
    return max(2, (os.cpu_count() or 1) * 2)


@dataclass(frozen=True)
class SessionPoolOptions:
    """Pool settings, validated on construction.

    min:         sessions created eagerly and kept around (default 10)
    max:         hard cap on sessions, leased plus available (default 100)
    keepalive:   idle seconds before a session is pinged (default 1800)
    write_ratio: share of ``min`` sessions begun with a read-write transaction
    fail:        raise ``SessionLimitError`` when exhausted instead of blocking
    threads:     worker threads for background session creation
    interval:    seconds between keep-alive sweeps
    """

    min: int = 10
    max: int = 100
    keepalive: float = 1800
    write_ratio: float = 0.3
    fail: bool = True
    threads: Optional[int] = None
    interval: float = 300

    def __post_init__(self) -> None:
        if self.threads is None:
            object.__setattr__(self, "threads", _default_threads())
        self._validate()

    @classmethod
    def from_dict(cls, opts: Optional[Mapping[str, Any]] = None) -> SessionPoolOptions:
        """Build options from a mapping; ``None`` values fall back to defaults."""
        opts = dict(opts or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(opts) - known)
        if unknown:
            raise ConfigurationError(f"Unknown session pool options: {unknown}")
        return cls(**{k: v for k, v in opts.items() if v is not None})

    def _validate(self) -> None:
        def is_number(value: Any) -> bool:
            return isinstance(value, (int, float)) and not isinstance(value, bool)

        for name in ("min", "max", "threads"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigurationError(f"Session pool option {name} must be an integer")
        if self.min < 0:
            raise ConfigurationError("Session pool min cannot be negative")
        if self.max < 1:
            raise ConfigurationError("Session pool max must be at least 1")
        if self.min > self.max:
            raise ConfigurationError("Session pool min cannot exceed max")
        if self.threads < 1:
            raise ConfigurationError("Session pool threads must be at least 1")
        if not is_number(self.keepalive) or self.keepalive <= 0:
            raise ConfigurationError("Session pool keepalive must be a positive number")
        if not is_number(self.interval) or self.interval <= 0:
            raise ConfigurationError("Session pool interval must be a positive number")
        if not is_number(self.write_ratio) or not 0 <= self.write_ratio <= 1:
            raise ConfigurationError("Session pool write_ratio must be between 0 and 1")
        if not isinstance(self.fail, bool):
            raise ConfigurationError("Session pool fail must be true or false")

    @property
    def initial_transactions(self) -> int:
        return int(round(self.min * self.write_ratio))


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------


class SessionPool:
    """Thread-safe pool of sessions for one database.

    Parameters
    ----------
    new_session:
        Creates a session server-side and returns it.
    options:
        Pool settings.
    start:
        Populate ``min`` sessions and start the keep-alive sweep immediately.
    """

    def __init__(
        self,
        new_session: Callable[[], Session],
        options: Optional[SessionPoolOptions] = None,
        *,
        start: bool = True,
    ) -> None:
        self._new_session_fn = new_session
        self._options = options or SessionPoolOptions()

        self._lock = threading.Lock()
        self._available = threading.Condition(self._lock)
        self._closed = True
        self._started = False
        self._init_state()
        if start:
            self.start()

    def _init_state(self) -> None:
        self._all: set[Session] = set()
        self._sessions: deque[Session] = deque()
        self._transactions: deque[Session] = deque()
        # Slots reserved for sessions being created, leased or not.
        self._creating = 0
        # Sessions on their way back to the queues without a lease.
        self._filling = 0
        self._pinging = 0
        self._beginning = 0
        self._pending: set[concurrent.futures.Future] = set()
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self._options.threads, thread_name_prefix="cloudbind-pool"
        )
        self._stop = threading.Event()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="cloudbind-pool-keepalive", daemon=True
        )

    @property
    def options(self) -> SessionPoolOptions:
        return self._options

    @property
    def closed(self) -> bool:
        return self._closed

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Create the initial sessions and start the sweep thread."""
        opts = self._options
        with self._lock:
            if self._started:
                return
            if self._sweeper.ident is not None:
                # Restarted after close(): threads cannot be reused.
                self._init_state()
            self._started = True
            self._closed = False
            self._creating = opts.min
            self._filling = opts.min

        transactions = opts.initial_transactions
        for _ in range(opts.min - transactions):
            self._submit(self._fill, False)
        for _ in range(transactions):
            self._submit(self._fill, True)
        self._sweeper.start()

        logger.info(
            "Session pool started (min=%d, max=%d, transactions=%d)",
            opts.min,
            opts.max,
            transactions,
        )

    def close(self) -> None:
        """Stop the sweep, wake waiters and delete every session (idempotent)."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._started = False
            sessions = list(self._all)
            self._all.clear()
            self._sessions.clear()
            self._transactions.clear()
            self._available.notify_all()

        self._stop.set()
        if self._sweeper.is_alive() and self._sweeper is not threading.current_thread():
            self._sweeper.join(timeout=5)
        self._executor.shutdown(wait=True, cancel_futures=True)

        for session in sessions:
            self._delete(session)
        logger.info("Session pool closed (%d sessions deleted)", len(sessions))

    def reset(self) -> None:
        """Close the pool and start it again with fresh sessions."""
        self.close()
        self.start()

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait for outstanding background creations; ``False`` on timeout."""
        with self._lock:
            pending = list(self._pending) if self._started else []
        if not pending:
            return True
        _, not_done = concurrent.futures.wait(pending, timeout=timeout)
        return not not_done

    # -- lease / return ----------------------------------------------------

    def acquire(self, write: bool = False, timeout: Optional[float] = None) -> Session:
        """Lease a session.

        Write leases prefer sessions with a pre-allocated transaction, read
        leases prefer plain ones.  When the pool is at ``max`` and empty, a
        session still being created, pinged or prepared in the background is
        waited for.  Once none is on its way, raises
        :class:`SessionLimitError` if ``fail`` is set, otherwise blocks until
        a session is released.  Waiting never exceeds ``timeout`` seconds.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._available:
            while True:
                if self._closed:
                    raise ClientClosedError("Session pool is closed")
                session = self._pop(write)
                if session is not None:
                    break
                if self._can_allocate():
                    self._creating += 1
                    break
                if self._options.fail and not self._incoming():
                    raise SessionLimitError(
                        f"No session available: all {self._options.max} sessions are in use"
                    )
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise SessionLimitError(f"No session available after {timeout}s")
                self._available.wait(remaining)

        if session is None:
            return self._new_session()

        if session.idle_since(self._options.keepalive):
            try:
                session.keepalive()
            except Exception:
                logger.warning(
                    "Keepalive failed for %s, replacing it", session.session_id, exc_info=True
                )
                with self._available:
                    if self._closed:
                        raise ClientClosedError("Session pool is closed") from None
                    # The stale session's slot goes to its replacement.
                    self._all.discard(session)
                    self._creating += 1
                self._submit_or_skip(self._delete, session)
                return self._new_session()
        return session

    def release(self, session: Session) -> None:
        """Return a leased session, or discard and replace it if invalid."""
        replace = prepare = False
        with self._available:
            if self._closed:
                logger.debug("Session %s released after close", session.session_id)
                return
            if session not in self._all:
                raise ValueError(f"Cannot release {session!r}: not owned by this pool")
            if session.invalid:
                self._all.discard(session)
                replace = self._reserve()
            elif session.has_transaction:
                self._transactions.append(session)
            elif self._needs_transaction():
                self._beginning += 1
                prepare = True
            else:
                self._sessions.append(session)
            self._available.notify()

        if session.invalid:
            logger.info("Discarding invalid session %s", session.session_id)
            self._submit_or_skip(self._delete, session)
            if replace:
                self._submit_or_skip(self._fill, False)
        elif prepare:
            self._submit_or_skip(self._prepare, session)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Lease a session for the duration of a ``with`` block."""
        session = self.acquire()
        try:
            yield session
        finally:
            self.release(session)

    @contextmanager
    def write_session(self) -> Iterator[Session]:
        """Like :meth:`session`, preferring a pre-allocated transaction."""
        session = self.acquire(write=True)
        try:
            yield session
        finally:
            self.release(session)

    # -- keep-alive --------------------------------------------------------

    def keepalive_or_release(self, now: Optional[float] = None) -> None:
        """Ping idle sessions and delete idle ones above ``min``.

        Idle sessions are taken out of circulation under the lock, then pinged
        outside it; acquirers wait for them meanwhile.  A failed ping discards
        the session and schedules a replacement.  Failures never propagate.
        """
        opts = self._options
        with self._lock:
            if self._closed:
                return
            idle = [
                s for s in list(self._sessions) + list(self._transactions)
                if s.idle_since(opts.keepalive, now)
            ]
            excess = max(0, len(self._all) - opts.min)
            to_release = idle[:excess]
            to_keepalive = idle[excess:]
            for session in idle:
                self._remove_available(session)
            for session in to_release:
                self._all.discard(session)
            self._pinging += len(to_keepalive)

        for session in to_release:
            logger.debug("Releasing idle session %s", session.session_id)
            self._delete(session)

        for session in to_keepalive:
            had_transaction = session.has_transaction
            try:
                session.keepalive()
            except Exception:
                logger.warning(
                    "Keepalive failed for %s, replacing it", session.session_id, exc_info=True
                )
                with self._available:
                    self._pinging -= 1
                    replace = self._drop(session)
                    self._available.notify_all()
                if replace:
                    self._submit_or_skip(self._fill, had_transaction)
                self._submit_or_skip(self._delete, session)
                continue
            with self._available:
                self._pinging -= 1
                if session in self._all:
                    self._make_available(session)
                self._available.notify_all()

        if to_release:
            with self._available:
                self._available.notify_all()

    # -- stats -------------------------------------------------------------

    @property
    def available_count(self) -> int:
        with self._lock:
            return len(self._sessions) + len(self._transactions)

    @property
    def transaction_count(self) -> int:
        with self._lock:
            return len(self._transactions)

    @property
    def leased_count(self) -> int:
        with self._lock:
            return self._leased()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "total": len(self._all),
                "available": len(self._sessions) + len(self._transactions),
                "transactions": len(self._transactions),
                "leased": self._leased(),
                "creating": self._creating,
                "pinging": self._pinging,
                "preparing": self._beginning,
            }

    # -- private -----------------------------------------------------------

    def _leased(self) -> int:
        # Caller holds the lock.
        return (
            len(self._all)
            - len(self._sessions)
            - len(self._transactions)
            - self._pinging
            - self._beginning
        )

    def _incoming(self) -> int:
        # Caller holds the lock.
        return self._filling + self._pinging + self._beginning

    def _needs_transaction(self) -> bool:
        # Caller holds the lock.
        return len(self._transactions) + self._beginning < self._options.initial_transactions

    def _can_allocate(self) -> bool:
        # Caller holds the lock.
        return len(self._all) + self._creating < self._options.max

    def _reserve(self) -> bool:
        """Reserve a slot for a background fill; caller holds the lock."""
        if self._closed or not self._can_allocate():
            return False
        self._creating += 1
        self._filling += 1
        return True

    def _drop(self, session: Session) -> bool:
        """Forget a session; True if a replacement slot was reserved.

        Caller holds the lock.
        """
        if session not in self._all:
            return False
        self._all.discard(session)
        return self._reserve()

    def _make_available(self, session: Session) -> None:
        # Caller holds the lock.
        queue = self._transactions if session.has_transaction else self._sessions
        queue.append(session)

    def _pop(self, write: bool) -> Optional[Session]:
        # Caller holds the lock.
        first, second = (
            (self._transactions, self._sessions) if write else (self._sessions, self._transactions)
        )
        if first:
            return first.pop()
        if second:
            return second.pop()
        return None

    def _remove_available(self, session: Session) -> None:
        for queue in (self._sessions, self._transactions):
            try:
                queue.remove(session)
            except ValueError:
                pass

    def _new_session(self, with_transaction: bool = False) -> Session:
        """Create a session; the caller has already reserved a slot."""
        try:
            session = self._new_session_fn()
        except Exception:
            with self._available:
                self._creating -= 1
                self._available.notify()
            raise

        if with_transaction:
            try:
                session.begin_transaction()
            except Exception:
                logger.warning(
                    "Could not pre-allocate a transaction on %s",
                    session.session_id,
                    exc_info=True,
                )

        with self._available:
            self._creating -= 1
            closed = self._closed
            if not closed:
                self._all.add(session)
        if closed:
            self._delete(session)
            raise ClientClosedError("Session pool is closed")
        logger.debug("Created session %s", session.session_id)
        return session

    def _fill(self, with_transaction: bool) -> None:
        """Background task: create a session and make it available."""
        session = None
        try:
            session = self._new_session(with_transaction)
        except ClientClosedError:
            pass
        except Exception:
            logger.warning("Background session creation failed", exc_info=True)
        with self._available:
            self._filling -= 1
            if session is not None and session in self._all:
                self._make_available(session)
            # Waiters re-check: a failed fill frees a slot instead.
            self._available.notify_all()

    def _prepare(self, session: Session) -> None:
        """Background task: begin a transaction on a released session."""
        try:
            session.begin_transaction()
        except Exception:
            logger.warning(
                "Could not pre-allocate a transaction on %s", session.session_id, exc_info=True
            )
        replace = False
        with self._available:
            self._beginning -= 1
            if session.invalid:
                replace = self._drop(session)
            elif session in self._all:
                self._make_available(session)
            self._available.notify_all()
        if session.invalid:
            self._submit_or_skip(self._delete, session)
            if replace:
                self._submit_or_skip(self._fill, True)

    def _delete(self, session: Session) -> None:
        try:
            session.delete()
        except Exception:
            logger.warning("Could not delete session %s", session.session_id, exc_info=True)

    def _submit(self, fn: Callable[..., Any], *args: Any) -> None:
        future = self._executor.submit(fn, *args)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _submit_or_skip(self, fn: Callable[..., Any], *args: Any) -> None:
        try:
            self._submit(fn, *args)
        except RuntimeError:
            # Executor already shut down: the pool was closed meanwhile.
            if fn == self._fill:
                with self._available:
                    self._creating -= 1
                    self._filling -= 1
                    self._available.notify_all()
            elif fn == self._prepare:
                with self._available:
                    self._beginning -= 1
                    self._available.notify_all()
            else:
                fn(*args)

    def _forget(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _sweep_loop(self) -> None:
        """Background thread: run keep-alive sweeps until stopped."""
        while not self._stop.wait(self._options.interval):
            try:
                self.keepalive_or_release()
            except Exception:
                logger.warning("Session keepalive sweep failed", exc_info=True)

    def __enter__(self) -> SessionPool:
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SessionPool(closed={self._closed}, min={self._options.min}, max={self._options.max})"
