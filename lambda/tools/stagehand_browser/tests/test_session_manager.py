import asyncio
import time

import pytest

from config import ToolConfig
from session_manager import BrowserRuntime, SessionRegistry


def test_acquire_creates_one_session_per_workflow(factory, tool_config, settings):
    registry = SessionRegistry(tool_config, factory)

    async def scenario():
        first = await registry.acquire("wf-1", settings)
        again = await registry.acquire("wf-1", settings)
        other = await registry.acquire("wf-2", settings)
        return first, again, other

    first, again, other = asyncio.run(scenario())

    assert first is again
    assert other is not first
    assert len(factory.created) == 2
    assert len(registry) == 2
    assert first.operation_count == 2
    assert first.connection_mode == "LOCAL"


def test_concurrent_acquire_creates_single_session(factory, tool_config, settings):
    registry = SessionRegistry(tool_config, factory)

    async def scenario():
        return await asyncio.gather(*(registry.acquire("wf", settings) for _ in range(5)))

    sessions = asyncio.run(scenario())

    assert len(factory.created) == 1
    assert all(session is sessions[0] for session in sessions)


def test_dead_page_is_reconnected_and_url_replayed(factory, tool_config, settings):
    registry = SessionRegistry(tool_config, factory)

    async def scenario():
        session = await registry.acquire("wf", settings)
        registry.record_navigation(session, "https://example.com/cart")
        session.stagehand.page.alive = False
        return session, await registry.acquire("wf", settings)

    session, reacquired = asyncio.run(scenario())

    assert reacquired is session
    assert len(factory.created) == 2
    old, new = factory.created
    assert old.closed is True
    assert new.page.calls == [("goto", "https://example.com/cart")]
    assert session.reconnect_count == 1
    assert session.stale is False
    assert session.operation_count == 2


def test_idle_session_is_reconnected(factory, settings):
    registry = SessionRegistry(ToolConfig(heartbeat_interval=0, idle_timeout=60), factory)

    async def scenario():
        session = await registry.acquire("wf", settings)
        session.last_used_at = time.monotonic() - 120
        await registry.acquire("wf", settings)
        return session

    session = asyncio.run(scenario())

    assert session.reconnect_count == 1
    assert len(factory.created) == 2


def test_failed_reconnect_is_retried_on_next_acquire(factory, tool_config, settings):
    registry = SessionRegistry(tool_config, factory)

    async def scenario():
        session = await registry.acquire("wf", settings)
        session.stagehand.page.alive = False
        factory.error = RuntimeError("browser launch failed")
        with pytest.raises(RuntimeError, match="browser launch failed"):
            await registry.acquire("wf", settings)
        assert session.stale is True
        assert session.stagehand is None

        factory.error = None
        return session, await registry.acquire("wf", settings)

    session, reacquired = asyncio.run(scenario())

    assert reacquired is session
    assert session.stale is False
    assert session.reconnect_count == 1


def test_heartbeat_reconnects_after_repeated_failures(factory, settings):
    config = ToolConfig(heartbeat_interval=0.01, heartbeat_timeout=0.5, max_heartbeat_failures=2, idle_timeout=0)
    registry = SessionRegistry(config, factory)

    async def scenario():
        session = await registry.acquire("wf", settings)
        registry.record_navigation(session, "https://example.com")
        assert session.heartbeat_task is not None
        session.stagehand.page.alive = False
        for _ in range(100):
            await asyncio.sleep(0.01)
            if session.reconnect_count:
                break
        await registry.close("wf")
        return session

    session = asyncio.run(scenario())

    assert session.reconnect_count == 1
    assert factory.created[0].closed is True
    assert factory.created[1].page.calls[0] == ("goto", "https://example.com")


def test_heartbeat_skips_busy_sessions(factory, settings):
    config = ToolConfig(heartbeat_interval=0.01, heartbeat_timeout=0.5, max_heartbeat_failures=1, idle_timeout=0)
    registry = SessionRegistry(config, factory)

    async def scenario():
        async with registry.session("wf", settings) as session:
            session.stagehand.page.alive = False
            await asyncio.sleep(0.1)
            failures = session.heartbeat_failures
        await registry.close("wf")
        return failures

    assert asyncio.run(scenario()) == 0
    assert len(factory.created) == 1


def test_close_stops_heartbeat_and_forgets_session(factory, settings):
    registry = SessionRegistry(ToolConfig(heartbeat_interval=60), factory)

    async def scenario():
        session = await registry.acquire("wf", settings)
        task = session.heartbeat_task
        closed = await registry.close("wf")
        missing = await registry.close("wf")
        return task, closed, missing

    task, closed, missing = asyncio.run(scenario())

    assert closed is True
    assert missing is False
    assert task.cancelled()
    assert factory.created[0].closed is True
    assert "wf" not in registry


def test_close_all_continues_after_close_error(factory, tool_config, settings):
    registry = SessionRegistry(tool_config, factory)

    async def failing_close():
        raise RuntimeError("target closed")

    async def scenario():
        first = await registry.acquire("wf-1", settings)
        await registry.acquire("wf-2", settings)
        first.stagehand.close = failing_close
        await registry.close_all()

    asyncio.run(scenario())

    assert len(registry) == 0
    assert factory.created[1].closed is True


def test_heartbeat_leaves_session_alone_when_operation_starts_during_probe(factory, settings):
    config = ToolConfig(heartbeat_interval=0.05, heartbeat_timeout=0.5, max_heartbeat_failures=1, idle_timeout=0)
    registry = SessionRegistry(config, factory)

    async def scenario():
        session = await registry.acquire("wf", settings)
        page = session.stagehand.page
        page.probe_delay = 0.1
        page.failing_probes = 1
        await asyncio.sleep(0.08)

        async with registry.session("wf", settings) as busy_session:
            await asyncio.sleep(0.3)
            state = (busy_session.stagehand, busy_session.stale, busy_session.heartbeat_failures)
        await registry.close("wf")
        return state

    stagehand, stale, failures = asyncio.run(scenario())

    assert stagehand is factory.created[0]
    assert len(factory.created) == 1
    assert stale is False
    assert failures == 0


def test_successful_heartbeat_resets_failures(factory, settings):
    config = ToolConfig(heartbeat_interval=0.01, heartbeat_timeout=0.5, max_heartbeat_failures=5, idle_timeout=0)
    registry = SessionRegistry(config, factory)

    async def scenario():
        session = await registry.acquire("wf", settings)
        session.heartbeat_failures = 3
        for _ in range(100):
            await asyncio.sleep(0.01)
            if session.heartbeat_failures == 0:
                break
        await registry.close("wf")
        return session

    session = asyncio.run(scenario())

    assert session.heartbeat_failures == 0
    assert session.reconnect_count == 0


def test_close_drops_workflow_lock(factory, tool_config, settings):
    registry = SessionRegistry(tool_config, factory)

    async def scenario():
        await registry.acquire("wf", settings)
        held = "wf" in registry._locks
        await registry.close("wf")
        await registry.close("never-opened")
        return held

    assert asyncio.run(scenario()) is True
    assert registry._locks == {}


def test_log_lines_are_buffered_per_session(factory, tool_config, settings):
    registry = SessionRegistry(tool_config, factory)

    async def scenario():
        session = await registry.acquire("wf", settings)
        session.stagehand.log_callback({"category": "action", "message": "clicking button", "level": 1})
        session.stagehand.log_callback("plain line")
        return session

    session = asyncio.run(scenario())

    assert session.drain_logs() == [
        {"category": "action", "message": "clicking button", "level": 1},
        {"message": "plain line"},
    ]
    assert session.drain_logs() == []


def test_stats_snapshot(factory, tool_config, settings):
    registry = SessionRegistry(tool_config, factory)

    async def scenario():
        session = await registry.acquire("wf", settings)
        registry.record_navigation(session, "https://example.com")

    asyncio.run(scenario())

    [snapshot] = registry.stats()
    assert snapshot["workflow_id"] == "wf"
    assert snapshot["last_url"] == "https://example.com"
    assert snapshot["model_name"] == "openai/gpt-4o"
    assert snapshot["operation_count"] == 1


def test_runtime_runs_coroutines_on_one_loop():
    runtime = BrowserRuntime()

    async def current_loop():
        return asyncio.get_running_loop()

    try:
        assert runtime.run(current_loop()) is runtime.run(current_loop())
        assert runtime.running
    finally:
        runtime.stop()

    assert not runtime.running


def test_runtime_timeout():
    runtime = BrowserRuntime()
    try:
        with pytest.raises(TimeoutError, match="did not finish within 0.05 seconds"):
            runtime.run(asyncio.sleep(5), timeout=0.05)
    finally:
        runtime.stop()


def test_runtime_propagates_errors():
    runtime = BrowserRuntime()

    async def boom():
        raise ValueError("bad input")

    try:
        with pytest.raises(ValueError, match="bad input"):
            runtime.run(boom())
    finally:
        runtime.stop()
