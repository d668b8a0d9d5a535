"""Line tracer that fires active breakpoints.

A global trace function is installed for every thread.  It answers
``"call"`` events with a local line tracer only when the called code lives
in a file that has an active breakpoint, so unrelated code runs without
per-line overhead.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
import types
from typing import Any, Callable, Iterable, Optional

from cloudbind.core.exceptions import EvaluationError
from cloudbind.debugger.breakpoint import Breakpoint

logger = logging.getLogger("cloudbind.debugger.tracer")

# Application output of logpoints goes here, separate from agent diagnostics.
logpoint_logger = logging.getLogger("cloudbind.debugger.logpoint")

_PACKAGE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

LineIndex = dict[int, list[Breakpoint]]


class Tracer:
    """Tracks active breakpoints and evaluates them when their line runs.

    Parameters
    ----------
    on_final:
        Called with a breakpoint once it reaches its final state (snapshot
        captured or evaluation error).  Runs on the application thread that
        hit the breakpoint and must not block.
    """

    def __init__(self, on_final: Callable[[Breakpoint], None]) -> None:
        self._on_final = on_final
        self._lock = threading.Lock()
        self._active: dict[str, Breakpoint] = {}
        self._finished: set[str] = set()
        self._files: dict[str, LineIndex] = {}
        self._installed = False

    # -- public ------------------------------------------------------------

    @property
    def installed(self) -> bool:
        return self._installed

    @property
    def active(self) -> list[Breakpoint]:
        with self._lock:
            return list(self._active.values())

    def update(self, breakpoints: Iterable[Breakpoint]) -> None:
        """Replace the active set with the breakpoints the controller lists.

        Breakpoints already known keep their object; breakpoints finalised
        locally are not re-armed while the controller still lists them.
        """
        with self._lock:
            incoming = {bp.id: bp for bp in breakpoints}
            self._finished &= incoming.keys()
            active: dict[str, Breakpoint] = {}
            for bp_id, bp in incoming.items():
                if bp_id in self._finished:
                    continue
                active[bp_id] = self._active.get(bp_id, bp)
            added = active.keys() - self._active.keys()
            removed = self._active.keys() - active.keys()
            self._active = active
            self._files = {}
        for bp_id in added:
            logger.info("Breakpoint %s activated", active[bp_id])
        for bp_id in removed:
            logger.info("Breakpoint %s cleared", bp_id)

    def install(self) -> None:
        """Hook every current and future thread."""
        if self._installed:
            return
        threading.settrace(self._trace)
        settrace_all = getattr(threading, "settrace_all_threads", None)
        if settrace_all is not None:
            settrace_all(self._trace)
        else:
            sys.settrace(self._trace)
        self._installed = True
        logger.debug("Trace hook installed")

    def uninstall(self) -> None:
        if not self._installed:
            return
        threading.settrace(None)  # type: ignore[arg-type]
        settrace_all = getattr(threading, "settrace_all_threads", None)
        if settrace_all is not None:
            settrace_all(None)
        else:
            sys.settrace(None)
        self._installed = False
        logger.debug("Trace hook removed")

    def hit(self, bp: Breakpoint, frame: types.FrameType) -> None:
        """Evaluate ``bp`` in ``frame``."""
        try:
            matched = bp.check_condition(frame)
        except EvaluationError as exc:
            if self._claim(bp):
                bp.set_error(str(exc), "BREAKPOINT_CONDITION")
                self._on_final(bp)
            return
        if not matched:
            return

        if bp.logpoint:
            logpoint_logger.log(bp.python_log_level, "LOGPOINT: %s", bp.log_message(frame))
            return

        if self._claim(bp):
            bp.capture(frame)
            logger.info("Snapshot %s captured", bp.id)
            self._on_final(bp)

    # -- private -----------------------------------------------------------

    def _claim(self, bp: Breakpoint) -> bool:
        """Deactivate ``bp``; False if another thread already finalised it."""
        with self._lock:
            if self._active.get(bp.id) is not bp:
                return False
            del self._active[bp.id]
            self._finished.add(bp.id)
            self._files = {}
        return True

    def _lines(self, filename: str) -> Optional[LineIndex]:
        files = self._files
        index = files.get(filename)
        if index is not None:
            return index
        if filename.startswith(_PACKAGE_DIR) or filename.startswith("<"):
            index = {}
        else:
            index = {}
            with self._lock:
                candidates = list(self._active.values())
            for bp in candidates:
                if bp.matches_file(filename):
                    index.setdefault(bp.line, []).append(bp)
        files[filename] = index
        return index

    def _trace(self, frame: types.FrameType, event: str, arg: Any) -> Any:
        if event != "call" or not self._active:
            return None
        if not self._lines(frame.f_code.co_filename):
            return None
        return self._trace_lines

    def _trace_lines(self, frame: types.FrameType, event: str, arg: Any) -> Any:
        if event != "line":
            return self._trace_lines
        index = self._lines(frame.f_code.co_filename)
        if not index:
            return None
        for bp in list(index.get(frame.f_lineno, ())):
            self.hit(bp, frame)
        return self._trace_lines
