"""Debuggee and breakpoint models, plus variable capture."""

from __future__ import annotations

import hashlib
import logging
import os
import time
import types
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from cloudbind.core.exceptions import EvaluationError
from cloudbind.debugger import evaluator

AGENT_VERSION = "cloudbind-python/0.1.0"

# Capture limits.
MAX_FRAMES = 20
MAX_FRAMES_WITH_LOCALS = 5
MAX_DEPTH = 3
MAX_MEMBERS = 10
MAX_VALUE_LENGTH = 256

_LOG_LEVELS = {
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


@dataclass(frozen=True)
class Debuggee:
    """The registered application.

    ``uniquifier`` distinguishes deployments of the same module/version.
    """

    project_id: str
    service_name: str = "default"
    service_version: str = "unversioned"
    description: str = ""
    labels: Mapping[str, str] = field(default_factory=dict)

    @property
    def uniquifier(self) -> str:
        digest = hashlib.sha1()
        for part in (self.project_id, self.service_name, self.service_version, AGENT_VERSION):
            digest.update(part.encode("utf-8"))
        return digest.hexdigest()

    def to_api(self) -> dict[str, Any]:
        labels = {"module": self.service_name, "version": self.service_version}
        labels.update(self.labels)
        return {
            "project": self.project_id,
            "uniquifier": self.uniquifier,
            "description": self.description
            or f"{self.project_id}-{self.service_name}-{self.service_version}",
            "labels": labels,
            "agentVersion": AGENT_VERSION,
        }


class Breakpoint:
    """A snapshot (``CAPTURE``) or logpoint (``LOG``) set on a source line."""

    def __init__(
        self,
        id: str,
        path: str,
        line: int,
        *,
        action: str = "CAPTURE",
        condition: Optional[str] = None,
        expressions: Optional[list[str]] = None,
        log_message_format: Optional[str] = None,
        log_level: str = "INFO",
        create_time: Optional[str] = None,
    ) -> None:
        self.id = id
        self.path = path.lstrip("/")
        self.line = line
        self.action = action
        self.condition = condition or None
        self.expressions = list(expressions or [])
        self.log_message_format = log_message_format
        self.log_level = log_level
        self.create_time = create_time
        self.is_final_state = False
        self.final_time: Optional[str] = None
        self.status: Optional[dict[str, Any]] = None
        self.stack_frames: list[dict[str, Any]] = []
        self.evaluated_expressions: list[dict[str, Any]] = []

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Breakpoint:
        location = data.get("location") or {}
        return cls(
            data["id"],
            location.get("path", ""),
            int(location.get("line", 0)),
            action=data.get("action", "CAPTURE"),
            condition=data.get("condition"),
            expressions=data.get("expressions"),
            log_message_format=data.get("logMessageFormat"),
            log_level=data.get("logLevel", "INFO"),
            create_time=data.get("createTime"),
        )

    def to_api(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "action": self.action,
            "location": {"path": self.path, "line": self.line},
            "isFinalState": self.is_final_state,
        }
        if self.condition:
            data["condition"] = self.condition
        if self.expressions:
            data["expressions"] = self.expressions
        if self.log_message_format is not None:
            data["logMessageFormat"] = self.log_message_format
            data["logLevel"] = self.log_level
        if self.create_time:
            data["createTime"] = self.create_time
        if self.final_time:
            data["finalTime"] = self.final_time
        if self.status:
            data["status"] = self.status
        if self.stack_frames:
            data["stackFrames"] = self.stack_frames
        if self.evaluated_expressions:
            data["evaluatedExpressions"] = self.evaluated_expressions
        return data

    @property
    def logpoint(self) -> bool:
        return self.action == "LOG"

    @property
    def python_log_level(self) -> int:
        return _LOG_LEVELS.get(self.log_level, logging.INFO)

    def matches_file(self, filename: str) -> bool:
        """True when ``filename`` (absolute) is the file this breakpoint names."""
        normalized = filename.replace(os.sep, "/")
        return normalized == self.path or normalized.endswith("/" + self.path)

    # -- evaluation --------------------------------------------------------

    def check_condition(self, frame: types.FrameType) -> bool:
        """Evaluate the condition; raises :class:`EvaluationError` when invalid."""
        if not self.condition:
            return True
        return bool(evaluator.evaluate(self.condition, frame))

    def log_message(self, frame: types.FrameType) -> str:
        values = []
        for expression in self.expressions:
            try:
                values.append(repr(evaluator.evaluate(expression, frame)))
            except EvaluationError as exc:
                values.append(f"<{exc}>")
        return evaluator.format_message(self.log_message_format or "", values)

    def capture(self, frame: types.FrameType) -> None:
        """Record the call stack and expressions of ``frame``, then finalise."""
        self.stack_frames = capture_stack(frame)
        self.evaluated_expressions = []
        for expression in self.expressions:
            try:
                value = evaluator.evaluate(expression, frame)
            except EvaluationError as exc:
                self.evaluated_expressions.append(
                    {"name": expression, "status": error_status(str(exc), "VARIABLE_VALUE")}
                )
                continue
            self.evaluated_expressions.append(to_variable(expression, value))
        self.complete()

    def set_error(self, message: str, refers_to: str = "UNSPECIFIED") -> None:
        self.status = error_status(message, refers_to)
        self.complete()

    def complete(self) -> None:
        self.is_final_state = True
        self.final_time = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())

    def __repr__(self) -> str:
        return f"Breakpoint(id={self.id!r}, {self.path}:{self.line}, action={self.action})"


# ---------------------------------------------------------------------------
# Capture helpers
# ---------------------------------------------------------------------------


def error_status(message: str, refers_to: str = "UNSPECIFIED") -> dict[str, Any]:
    return {
        "isError": True,
        "refersTo": refers_to,
        "description": {"format": message.replace("$", "$$")},
    }


def to_variable(name: str, value: Any, depth: int = 0) -> dict[str, Any]:
    """Describe ``value`` as a debugger Variable, bounded in depth and width."""
    variable: dict[str, Any] = {"name": name, "type": type(value).__name__}
    if value is None or isinstance(value, (bool, int, float, complex)):
        variable["value"] = repr(value)
        return variable
    if isinstance(value, (str, bytes)):
        text = repr(value)
        if len(text) > MAX_VALUE_LENGTH:
            text = text[:MAX_VALUE_LENGTH] + "..."
        variable["value"] = text
        return variable
    if depth >= MAX_DEPTH:
        variable["status"] = error_status("Maximum depth reached", "VARIABLE_VALUE")
        return variable

    members: list[tuple[str, Any]]
    if isinstance(value, Mapping):
        members = [(repr(k), v) for k, v in list(value.items())[: MAX_MEMBERS + 1]]
    elif isinstance(value, (list, tuple, set, frozenset)):
        members = [(f"[{i}]", v) for i, v in enumerate(list(value)[: MAX_MEMBERS + 1])]
    else:
        attrs = getattr(value, "__dict__", None)
        if not isinstance(attrs, dict):
            variable["value"] = _safe_repr(value)
            return variable
        members = list(attrs.items())[: MAX_MEMBERS + 1]

    truncated = len(members) > MAX_MEMBERS
    variable["members"] = [to_variable(n, v, depth + 1) for n, v in members[:MAX_MEMBERS]]
    if truncated:
        variable["status"] = error_status(
            f"Only first {MAX_MEMBERS} items were captured", "VARIABLE_VALUE"
        )
    return variable


def capture_stack(frame: Optional[types.FrameType]) -> list[dict[str, Any]]:
    frames = []
    depth = 0
    while frame is not None and depth < MAX_FRAMES:
        code = frame.f_code
        entry: dict[str, Any] = {
            "function": code.co_name,
            "location": {"path": code.co_filename, "line": frame.f_lineno},
        }
        if depth < MAX_FRAMES_WITH_LOCALS:
            entry["locals"] = [
                to_variable(name, value) for name, value in list(frame.f_locals.items())
            ]
        frames.append(entry)
        frame = frame.f_back
        depth += 1
    return frames


def _safe_repr(value: Any) -> str:
    try:
        text = repr(value)
    except Exception as exc:
        return f"<repr failed: {type(exc).__name__}>"
    if len(text) > MAX_VALUE_LENGTH:
        text = text[:MAX_VALUE_LENGTH] + "..."
    return text
