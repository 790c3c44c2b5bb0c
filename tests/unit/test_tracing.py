import asyncio
import logging

import pytest

from genflow.tracing import (
    current_trace,
    get_trace,
    run_with_trace,
    summarize_value,
    trace,
    traced,
)

log = logging.getLogger("tests.tracing.handler")


def _names(trace_data):
    return [step["name"] for step in trace_data["steps"]]


@pytest.mark.asyncio
async def test_run_with_trace_returns_result_and_document():
    async def handler():
        trace("prompt built", {"prompt": "a fox", "skipped": None})
        return {"content": "done"}

    result, data = await run_with_trace(7, "script", handler)

    assert result == {"content": "done"}
    assert data["task_id"] == 7
    assert data["task_type"] == "script"
    assert _names(data) == ["task started", "prompt built", "task finished"]
    assert data["total_steps"] == 3
    assert [s["seq"] for s in data["steps"]] == [1, 2, 3]
    assert data["steps"][1]["prompt"] == "a fox"
    assert "skipped" not in data["steps"][1]
    assert data["total_time_ms"] >= 0


@pytest.mark.asyncio
async def test_sync_callable_is_supported():
    result, data = await run_with_trace(1, "sync", lambda: 42)

    assert result == 42
    assert _names(data) == ["task started", "task finished"]


@pytest.mark.asyncio
async def test_failure_attaches_partial_trace_to_exception():
    async def handler():
        trace("calling provider")
        raise RuntimeError("rate limited")

    with pytest.raises(RuntimeError) as info:
        await run_with_trace(3, "image", handler)

    data = get_trace(info.value)
    assert data is not None
    assert _names(data) == ["task started", "calling provider", "task failed"]
    assert data["steps"][-1]["error"] == "rate limited"


def test_get_trace_without_trace_is_none():
    assert get_trace(ValueError("x")) is None


@pytest.mark.asyncio
async def test_trace_outside_scope_is_noop():
    assert current_trace() is None
    trace("ignored")
    assert current_trace() is None


@pytest.mark.asyncio
async def test_log_records_are_mirrored_into_trace(caplog):
    caplog.set_level(logging.INFO)

    async def handler():
        log.info("submitting %s", "job-1")
        log.debug("too chatty to keep")
        log.warning("x" * 600)
        return None

    _, data = await run_with_trace(1, "image", handler)

    logs = [s for s in data["steps"] if s["name"].startswith("[log.")]
    assert [s["name"] for s in logs] == ["[log.info]", "[log.warning]"]
    assert logs[0]["message"] == "submitting job-1"
    assert logs[1]["message"] == "x" * 500 + "..."
    # Mirrored, not redirected.
    assert "submitting job-1" in caplog.text


@pytest.mark.asyncio
async def test_trace_echo_lines_are_not_captured(caplog):
    caplog.set_level(logging.INFO)

    async def handler():
        trace("one")
        trace("two")

    _, data = await run_with_trace(1, "image", handler)

    assert _names(data) == ["task started", "one", "two", "task finished"]
    assert "[trace:image #1]" in caplog.text


@pytest.mark.asyncio
async def test_concurrent_executions_see_only_their_own_trace(caplog):
    caplog.set_level(logging.INFO)
    gate = asyncio.Event()

    async def handler(name: str):
        trace(f"{name} before")
        log.info(f"{name} logging")
        await gate.wait()
        await asyncio.sleep(0)
        trace(f"{name} after")
        return name

    async def release():
        await asyncio.sleep(0)
        gate.set()

    (_, first), (_, second), _ = await asyncio.gather(
        run_with_trace(1, "a", lambda: handler("a")),
        run_with_trace(2, "b", lambda: handler("b")),
        release(),
    )

    assert _names(first) == [
        "task started",
        "a before",
        "[log.info]",
        "a after",
        "task finished",
    ]
    assert _names(second) == [
        "task started",
        "b before",
        "[log.info]",
        "b after",
        "task finished",
    ]
    assert first["steps"][2]["message"] == "a logging"
    assert second["steps"][2]["message"] == "b logging"


@pytest.mark.asyncio
async def test_trace_follows_spawned_subtasks():
    async def child():
        await asyncio.sleep(0)
        trace("from child task")

    async def handler():
        await asyncio.create_task(child())

    _, data = await run_with_trace(1, "x", handler)

    assert "from child task" in _names(data)


@pytest.mark.asyncio
async def test_traced_async_function_records_start_and_finish():
    @traced("upload image", extract_input=lambda url: {"url": url})
    async def upload(url):
        return {"id": 1, "url": url}

    async def handler():
        return await upload("http://x/1.png")

    result, data = await run_with_trace(1, "image", handler)

    assert result == {"id": 1, "url": "http://x/1.png"}
    started, finished = data["steps"][1], data["steps"][2]
    assert started["name"] == "upload image started"
    assert started["url"] == "http://x/1.png"
    assert finished["name"] == "upload image finished"
    assert finished["result_keys"] == ["id", "url"]
    assert finished["elapsed"].endswith("ms")


@pytest.mark.asyncio
async def test_traced_sync_function_records_failure():
    def parse(text):
        raise ValueError("not json")

    wrapped = traced("parse reply", parse)

    async def handler():
        wrapped("{")

    with pytest.raises(ValueError):
        await run_with_trace(1, "script", handler)


@pytest.mark.asyncio
async def test_traced_failure_event_is_in_attached_trace():
    @traced("parse reply", extract_output=lambda r: {"length": len(r)})
    def parse(text):
        raise ValueError("not json")

    async def handler():
        parse("{")

    with pytest.raises(ValueError) as info:
        await run_with_trace(1, "script", handler)

    names = _names(get_trace(info.value))
    assert names == [
        "task started",
        "parse reply started",
        "parse reply failed",
        "task failed",
    ]


def test_traced_outside_scope_runs_plain_function():
    @traced("noop")
    def add(a, b):
        return a + b

    assert add(1, 2) == 3


def test_summarize_value_bounds_payloads():
    assert summarize_value("short") == "short"
    assert summarize_value("y" * 250) == "y" * 200 + "..."
    assert summarize_value([1, 2, 3]) == [1, 2, 3]

    collapsed = summarize_value(list(range(10)))
    assert collapsed.startswith("[10 items] [0, 1, 2]")
    assert collapsed.endswith("...")

    assert summarize_value({"a": 1}) == {"a": 1}
    big = summarize_value({"text": "z" * 400})
    assert isinstance(big, str)
    assert len(big) == 303
    assert summarize_value(None) is None
    assert summarize_value(3.5) == 3.5


class _Collect(logging.Handler):
    def __init__(self):
        super().__init__()
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


@pytest.fixture
def quiet_root():
    root = logging.getLogger()
    previous = root.level
    collector = _Collect()
    root.addHandler(collector)
    root.setLevel(logging.WARNING)
    yield root, collector
    root.removeHandler(collector)
    root.setLevel(previous)


@pytest.mark.asyncio
async def test_info_lines_are_captured_when_root_logger_is_quiet(quiet_root):
    root, collector = quiet_root

    async def handler():
        log.info("submitting job-1")
        log.warning("slow provider")

    _, data = await run_with_trace(1, "image", handler)

    logs = [(s["name"], s["message"]) for s in data["steps"] if "message" in s]
    assert logs == [("[log.info]", "submitting job-1"), ("[log.warning]", "slow provider")]
    # Other handlers still only see what the root level allowed.
    assert "submitting job-1" not in collector.messages
    assert "slow provider" in collector.messages
    assert root.level == logging.WARNING
    assert not collector.filters


@pytest.mark.asyncio
async def test_root_level_is_restored_after_overlapping_traces(quiet_root):
    root, _ = quiet_root
    gate = asyncio.Event()

    async def first():
        log.info("first waiting")
        await gate.wait()
        log.info("first done")

    async def second():
        log.info("second")
        gate.set()

    (_, a), (_, b) = await asyncio.gather(
        run_with_trace(1, "a", first), run_with_trace(2, "b", second)
    )

    assert [s["message"] for s in a["steps"] if "message" in s] == [
        "first waiting",
        "first done",
    ]
    assert [s["message"] for s in b["steps"] if "message" in s] == ["second"]
    assert root.level == logging.WARNING
