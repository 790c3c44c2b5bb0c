"""Execution traces for individual task runs.

The engine wraps every step handler in :func:`run_with_trace`. Inside that
scope any code, however deeply nested and across ``await`` points, can record
events without being handed the trace object::

    from genflow.tracing import trace, traced

    trace("prompt built", {"prompt": prompt})

    @traced("upload image")
    async def upload(data): ...

The active trace lives in a :class:`~contextvars.ContextVar`, so concurrent
task executions (separate asyncio tasks) never see each other's events. Log
records emitted while a trace is active are mirrored into it as well.
"""

from __future__ import annotations

import functools
import inspect
import json
import logging
import threading
import time
from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_STRING_LENGTH = 200
MAX_LIST_ITEMS = 5
MAX_OBJECT_LENGTH = 300
MAX_LOG_MESSAGE_LENGTH = 500

_TRACE_ATTR = "genflow_trace"

_current_trace: ContextVar[Optional["ExecutionTrace"]] = ContextVar(
    "genflow_current_trace", default=None
)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str, ensure_ascii=False)


def summarize_value(value: Any) -> Any:
    """Shrink ``value`` so stored traces stay bounded."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        if len(value) > MAX_STRING_LENGTH:
            return value[:MAX_STRING_LENGTH] + "..."
        return value
    if isinstance(value, (list, tuple)):
        if len(value) <= MAX_LIST_ITEMS:
            return [summarize_value(item) for item in value]
        return f"[{len(value)} items] {_dumps(list(value[:3]))[:150]}..."
    if isinstance(value, dict):
        text = _dumps(value)
        if len(text) > MAX_OBJECT_LENGTH:
            return text[:MAX_OBJECT_LENGTH] + "..."
        return json.loads(text)
    return summarize_value(str(value))


def _summarize_for_log(value: Any) -> str:
    if isinstance(value, str):
        return f'"{value[:80]}..."' if len(value) > 80 else f'"{value}"'
    if isinstance(value, (list, tuple)):
        return f"[{len(value)} items]"
    if isinstance(value, dict):
        return "{" + ",".join(str(k) for k in value) + "}"
    return str(value)


class ExecutionTrace:
    """Ordered, timestamped events recorded during one task execution."""

    def __init__(
        self,
        task_id: Any,
        task_type: str,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.task_id = task_id
        self.task_type = task_type
        self.steps: list[dict[str, Any]] = []
        self._clock = clock
        self._started = clock()

    def _elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    def add_step(self, name: str, data: Optional[dict[str, Any]] = None) -> None:
        """Record a named event with summarized ``data``."""
        elapsed = self._elapsed_ms()
        entry: dict[str, Any] = {
            "seq": len(self.steps) + 1,
            "elapsed_ms": elapsed,
            "name": name,
        }
        data = data or {}
        for key, value in data.items():
            if value is None:
                continue
            entry[key] = summarize_value(value)
        self.steps.append(entry)

        details = ", ".join(f"{k}={_summarize_for_log(v)}" for k, v in data.items())
        logger.info(
            f"[trace:{self.task_type} #{self.task_id}] {entry['seq']} "
            f"+{elapsed / 1000:.1f}s {name}" + (f" | {details}" if details else "")
        )

    def capture_log(self, level: str, message: str) -> None:
        if not message:
            return
        if len(message) > MAX_LOG_MESSAGE_LENGTH:
            message = message[:MAX_LOG_MESSAGE_LENGTH] + "..."
        self.steps.append(
            {
                "seq": len(self.steps) + 1,
                "elapsed_ms": self._elapsed_ms(),
                "name": f"[log.{level}]",
                "message": message,
            }
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "task_type": self.task_type,
            "total_steps": len(self.steps),
            "total_time_ms": self._elapsed_ms(),
            "steps": [dict(step) for step in self.steps],
        }

    def log_summary(self, status: str, extra: str = "") -> None:
        logger.info(
            f"[trace:{self.task_type} #{self.task_id}] {status} | "
            f"{len(self.steps)} events | {self._elapsed_ms() / 1000:.1f}s"
            + (f" | {extra}" if extra else "")
        )


class TraceLogHandler(logging.Handler):
    """Mirror log records into the trace active in the emitting context."""

    def emit(self, record: logging.LogRecord) -> None:
        active = _current_trace.get()
        if active is None or record.name == __name__:
            return
        try:
            message = record.getMessage()
            if record.exc_info and record.exc_info[1] is not None:
                message = f"{message}: {record.exc_info[1]}"
            active.capture_log(record.levelname.lower(), message)
        except Exception:
            self.handleError(record)


_log_handler: Optional[TraceLogHandler] = None


def install_log_capture(level: int = logging.INFO) -> TraceLogHandler:
    """Attach the mirroring handler to the root logger (once)."""
    global _log_handler
    if _log_handler is None:
        _log_handler = TraceLogHandler(level=level)
        logging.getLogger().addHandler(_log_handler)
    return _log_handler


class _LevelFloor(logging.Filter):
    """Hold a handler at the root level it saw before capture lowered it."""

    def __init__(self, level: int) -> None:
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= self.level


_capture_lock = threading.Lock()
_capture_depth = 0
_saved_root: Optional[tuple[int, _LevelFloor, list[logging.Handler]]] = None


def _open_capture() -> None:
    """Let INFO records reach the mirroring handler while any trace is open.

    If the root logger is quieter than the handler, it is lowered for the
    duration and its other handlers get a filter at the old level, so what
    they emit does not change. Loggers given an explicit level of their own
    keep it.
    """
    global _capture_depth, _saved_root
    handler = install_log_capture()
    with _capture_lock:
        _capture_depth += 1
        if _capture_depth > 1:
            return
        root = logging.getLogger()
        if root.level <= handler.level:
            return
        floor = _LevelFloor(root.level)
        others = [h for h in root.handlers if h is not handler]
        for other in others:
            other.addFilter(floor)
        _saved_root = (root.level, floor, others)
        root.setLevel(handler.level)


def _close_capture() -> None:
    global _capture_depth, _saved_root
    with _capture_lock:
        _capture_depth -= 1
        if _capture_depth > 0 or _saved_root is None:
            return
        level, floor, others = _saved_root
        _saved_root = None
        for other in others:
            other.removeFilter(floor)
        logging.getLogger().setLevel(level)


def current_trace() -> Optional[ExecutionTrace]:
    """Return the trace of the task execution running in this context."""
    return _current_trace.get()


def trace(name: str, data: Optional[dict[str, Any]] = None) -> None:
    """Record an event on the active trace; a no-op outside one."""
    active = _current_trace.get()
    if active is not None:
        active.add_step(name, data)


def attach_trace(exc: BaseException, trace_data: dict[str, Any]) -> None:
    try:
        setattr(exc, _TRACE_ATTR, trace_data)
    except AttributeError:
        logger.debug(f"Cannot attach trace to {type(exc).__name__}")


def get_trace(exc: BaseException) -> Optional[dict[str, Any]]:
    """Return the partial trace attached to ``exc`` by :func:`run_with_trace`."""
    return getattr(exc, _TRACE_ATTR, None)


async def run_with_trace(
    task_id: Any,
    task_type: str,
    fn: Callable[[], Union[T, Awaitable[T]]],
) -> tuple[T, dict[str, Any]]:
    """Run ``fn`` inside a fresh trace scope.

    Log records at INFO and above are mirrored into the trace even when the
    root logger is configured quieter; see :func:`_open_capture`.

    Returns ``(result, trace_dict)``. If ``fn`` raises, a ``task failed``
    event is recorded, the partial trace is attached to the exception (see
    :func:`get_trace`) and the exception propagates.
    """
    active = ExecutionTrace(task_id, task_type)
    token = _current_trace.set(active)
    _open_capture()
    try:
        active.add_step("task started")
        result = fn()
        if inspect.isawaitable(result):
            result = await result
        active.add_step("task finished")
        active.log_summary("completed")
        return result, active.to_dict()
    except Exception as exc:
        active.add_step("task failed", {"error": str(exc)})
        active.log_summary("failed", f"error={exc}")
        attach_trace(exc, active.to_dict())
        raise
    finally:
        _current_trace.reset(token)
        _close_capture()


def _default_output(result: Any) -> dict[str, Any]:
    if isinstance(result, dict):
        return {"result_keys": list(result.keys())}
    if result is None:
        return {}
    return {"result_type": type(result).__name__}


def traced(
    name: str,
    fn: Optional[Callable[..., Any]] = None,
    *,
    extract_input: Optional[Callable[..., dict[str, Any]]] = None,
    extract_output: Optional[Callable[[Any], dict[str, Any]]] = None,
) -> Any:
    """Record ``<name> started`` / ``finished`` / ``failed`` around ``fn``.

    Works on sync and async callables, either as ``traced("name", fn)`` or
    as a decorator ``@traced("name")``. Outside a trace scope the wrapped
    function runs untouched. By default inputs are not recorded and outputs
    are summarized by their keys.
    """

    def decorate(func: Callable[..., Any]) -> Callable[..., Any]:
        def started(active: ExecutionTrace, args: tuple, kwargs: dict) -> float:
            data = extract_input(*args, **kwargs) if extract_input else {}
            active.add_step(f"{name} started", data)
            return time.monotonic()

        def finished(active: ExecutionTrace, began: float, result: Any) -> None:
            data = extract_output(result) if extract_output else _default_output(result)
            elapsed = int((time.monotonic() - began) * 1000)
            active.add_step(f"{name} finished", {**data, "elapsed": f"{elapsed}ms"})

        def failed(active: ExecutionTrace, began: float, exc: Exception) -> None:
            elapsed = int((time.monotonic() - began) * 1000)
            active.add_step(
                f"{name} failed", {"error": str(exc), "elapsed": f"{elapsed}ms"}
            )

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                active = _current_trace.get()
                if active is None:
                    return await func(*args, **kwargs)
                began = started(active, args, kwargs)
                try:
                    result = await func(*args, **kwargs)
                except Exception as exc:
                    failed(active, began, exc)
                    raise
                finished(active, began, result)
                return result

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            active = _current_trace.get()
            if active is None:
                return func(*args, **kwargs)
            began = started(active, args, kwargs)
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                failed(active, began, exc)
                raise
            finished(active, began, result)
            return result

        return sync_wrapper

    if fn is not None:
        return decorate(fn)
    return decorate
