"""Debugger agent: registers the application and keeps breakpoints in sync."""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Mapping, Optional

from cloudbind.core.exceptions import CloudError, NotFoundError
from cloudbind.debugger.breakpoint import Breakpoint, Debuggee
from cloudbind.debugger.service import Service
from cloudbind.debugger.tracer import Tracer

logger = logging.getLogger("cloudbind.debugger.agent")

_MIN_BACKOFF = 1.0
_MAX_BACKOFF = 60.0


def debuggee_from_env(
    project_id: str,
    service_name: Optional[str] = None,
    service_version: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Debuggee:
    """Describe this process, naming it from ``GAE_SERVICE``/``GAE_VERSION``."""
    environ = os.environ if environ is None else environ
    return Debuggee(
        project_id=project_id,
        service_name=service_name or environ.get("GAE_SERVICE") or "default",
        service_version=service_version or environ.get("GAE_VERSION") or "unversioned",
    )


class Agent:
    """Background worker bridging the controller service and the tracer.

    The worker thread registers the debuggee, then long-polls for the list
    of active breakpoints and hands it to the :class:`Tracer`.  Finalised
    breakpoints are reported from a single-thread executor so the
    application thread that hit them never waits on the network.

    Usage::

        from cloudbind import debugger

        agent = debugger.new()
        agent.start()
        ...
        agent.stop()
    """

    def __init__(self, service: Service, debuggee: Debuggee) -> None:
        self.service = service
        self.debuggee = debuggee
        self.tracer = Tracer(self._report_later)
        self._debuggee_id: Optional[str] = None
        self._wait_token: Optional[str] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._reporter: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

    @property
    def debuggee_id(self) -> Optional[str]:
        return self._debuggee_id

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Install the trace hook and start polling in a daemon thread."""
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._reporter = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="cloudbind-debugger-report"
            )
            self.tracer.install()
            self._thread = threading.Thread(
                target=self._run, name="cloudbind-debugger", daemon=True
            )
            self._thread.start()
        logger.info(
            "Debugger agent started for %s/%s",
            self.debuggee.service_name,
            self.debuggee.service_version,
        )

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Signal the worker, remove the trace hook and join the thread.

        A long-poll in flight may outlive ``timeout``; the daemon thread then
        exits on its own once the request returns.
        """
        with self._lock:
            self._stop.set()
            self.tracer.uninstall()
            thread, self._thread = self._thread, None
            reporter, self._reporter = self._reporter, None
        if thread is not None:
            thread.join(timeout)
        if reporter is not None:
            reporter.shutdown(wait=True)
        logger.info("Debugger agent stopped")

    def close(self) -> None:
        self.stop()
        self.service.close()

    def __enter__(self) -> Agent:
        self.start()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    # -- controller protocol -----------------------------------------------

    def register(self) -> bool:
        """Register the debuggee; False if the controller disabled it."""
        data = self.service.register_debuggee(self.debuggee.to_api())
        debuggee = data.get("debuggee") or {}
        if debuggee.get("isDisabled"):
            logger.warning("Debuggee is disabled by the controller")
            self._debuggee_id = None
            return False
        try:
            self._debuggee_id = debuggee["id"]
        except KeyError as exc:
            raise CloudError("Malformed registration response: no debuggee id") from exc
        self._wait_token = None
        logger.info("Registered debuggee %s", self._debuggee_id)
        return True

    def poll(self) -> None:
        """One long-poll round; updates the tracer unless the wait expired."""
        if self._debuggee_id is None:
            raise CloudError("Debuggee not registered")
        data = self.service.list_active_breakpoints(self._debuggee_id, self._wait_token)
        self._wait_token = data.get("nextWaitToken") or self._wait_token
        if data.get("waitExpired"):
            return
        try:
            breakpoints = [Breakpoint.from_api(raw) for raw in data.get("breakpoints") or []]
        except (KeyError, ValueError, TypeError) as exc:
            raise CloudError(f"Malformed breakpoint list: {exc}") from exc
        self.tracer.update(breakpoints)

    def report(self, bp: Breakpoint) -> None:
        if self._debuggee_id is None:
            logger.warning("Dropping result of breakpoint %s: not registered", bp.id)
            return
        try:
            self.service.update_active_breakpoint(self._debuggee_id, bp.to_api())
        except CloudError as exc:
            logger.error("Failed to report breakpoint %s: %s", bp.id, exc)

    # -- private -----------------------------------------------------------

    def _report_later(self, bp: Breakpoint) -> None:
        reporter = self._reporter
        if reporter is None:
            self.report(bp)
            return
        try:
            reporter.submit(self.report, bp)
        except RuntimeError:
            logger.warning("Agent stopped; breakpoint %s not reported", bp.id)

    def _run(self) -> None:
        backoff = _MIN_BACKOFF
        while not self._stop.is_set():
            try:
                if self._debuggee_id is None and not self.register():
                    self._stop.wait(backoff)
                    backoff = min(backoff * 2, _MAX_BACKOFF)
                    continue
                self.poll()
                backoff = _MIN_BACKOFF
            except NotFoundError:
                logger.info("Debuggee %s unknown to the controller, re-registering",
                            self._debuggee_id)
                self._debuggee_id = None
            except CloudError as exc:
                if self._stop.is_set():
                    break
                logger.warning("Debugger controller call failed: %s; retrying in %.0fs",
                               exc, backoff)
                self._stop.wait(backoff)
                backoff = min(backoff * 2, _MAX_BACKOFF)
            except Exception:
                if self._stop.is_set():
                    break
                logger.exception("Unexpected debugger agent failure; retrying in %.0fs",
                                 backoff)
                self._stop.wait(backoff)
                backoff = min(backoff * 2, _MAX_BACKOFF)
