"""
Browser session lifecycle for the Stagehand browser tool

Keeps one Stagehand session per workflow id, so consecutive tool calls from the
same workflow share a browser. Sessions are checked before every use and by a
keep-alive heartbeat; a stale session is recreated and the last navigated URL
is loaded again.

Lambda handlers are synchronous, so sessions and heartbeats live on an event
loop owned by a background thread (BrowserRuntime) that survives between warm
invocations.
"""

import asyncio
import contextlib
import threading
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Awaitable, Callable, Deque, Dict, List, Optional

from aws_lambda_powertools import Logger

from config import ToolConfig
from credentials import get_browserbase_credentials
from stagehand_helpers import (
    SessionSettings,
    build_stagehand_config_kwargs,
    create_stagehand,
    format_log_line,
    probe_page,
)

logger = Logger(service="stagehand-browser")

LOG_BUFFER_SIZE = 500

SessionFactory = Callable[[SessionSettings, Callable[[Any], None]], Awaitable[Any]]


@dataclass
class BrowserSession:
    """A Stagehand session bound to one workflow."""

    workflow_id: str
    stagehand: Any
    connection_mode: str
    settings: SessionSettings
    last_url: Optional[str] = None
    heartbeat_task: Optional[asyncio.Task] = None
    operation_count: int = 0
    reconnect_count: int = 0
    heartbeat_failures: int = 0
    created_at: float = field(default_factory=time.time)
    last_used_at: float = field(default_factory=time.monotonic)
    stale: bool = False
    busy: int = 0
    log_buffer: Deque[Dict[str, Any]] = field(default_factory=lambda: deque(maxlen=LOG_BUFFER_SIZE))

    @property
    def page(self) -> Any:
        return self.stagehand.page

    @property
    def model_name(self) -> str:
        return self.settings.model_name

    def touch(self) -> None:
        self.last_used_at = time.monotonic()

    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_used_at

    def drain_logs(self) -> List[Dict[str, Any]]:
        """Return and clear the log lines captured since the last drain"""
        lines = list(self.log_buffer)
        self.log_buffer.clear()
        return lines

    def snapshot(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "connection_mode": self.connection_mode,
            "model_name": self.model_name,
            "last_url": self.last_url,
            "operation_count": self.operation_count,
            "reconnect_count": self.reconnect_count,
            "heartbeat_failures": self.heartbeat_failures,
            "idle_seconds": round(self.idle_seconds(), 1),
            "stale": self.stale,
        }


class SessionRegistry:
    """
    Map of workflow id to BrowserSession.

    All methods must run on the runtime loop. At most one session exists per
    workflow id; creation, reconnection and closing of a workflow's session
    are serialised by a per-workflow lock.
    """

    def __init__(self, config: ToolConfig, session_factory: Optional[SessionFactory] = None):
        self._config = config
        self._factory = session_factory or self._default_factory
        self._sessions: Dict[str, BrowserSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def _default_factory(self, settings: SessionSettings, log_callback: Callable[[Any], None]) -> Any:
        config = self._config
        if config.connection_mode == "BROWSERBASE":
            api_key, project_id = await asyncio.to_thread(get_browserbase_credentials, config)
            config = replace(config, browserbase_api_key=api_key, browserbase_project_id=project_id)
        return await create_stagehand(build_stagehand_config_kwargs(settings, config, log_callback))

    @contextlib.asynccontextmanager
    async def _locked(self, workflow_id: str) -> AsyncIterator[None]:
        """Hold the workflow's lock; retry when close() dropped it while we waited"""
        while True:
            lock = self._locks.setdefault(workflow_id, asyncio.Lock())
            async with lock:
                if self._locks.get(workflow_id) is lock:
                    yield
                    return

    def __contains__(self, workflow_id: str) -> bool:
        return workflow_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, workflow_id: str) -> Optional[BrowserSession]:
        return self._sessions.get(workflow_id)

    @staticmethod
    def _log_sink(buffer: Deque[Dict[str, Any]]) -> Callable[[Any], None]:
        def sink(line: Any) -> None:
            entry = format_log_line(line)
            buffer.append(entry)
            logger.debug(f"stagehand: {entry.get('message', entry)}")

        return sink

    async def acquire(self, workflow_id: str, settings: SessionSettings) -> BrowserSession:
        """
        Get the live session for a workflow, creating or reconnecting it as needed.

        Args:
            workflow_id: Workflow the session belongs to
            settings: Settings used if a session has to be created

        Returns:
            A session whose page answered a liveness probe
        """
        async with self._locked(workflow_id):
            session = self._sessions.get(workflow_id)
            if session is None:
                session = await self._open(workflow_id, settings)
            elif await self._is_stale(session):
                await self._reconnect(session)
            elif session.model_name != settings.model_name:
                logger.warning(
                    f"Workflow {workflow_id} keeps its session on {session.model_name}; "
                    f"close the session to switch to {settings.model_name}"
                )

            session.operation_count += 1
            session.touch()
            return session

    @contextlib.asynccontextmanager
    async def session(self, workflow_id: str, settings: SessionSettings) -> AsyncIterator[BrowserSession]:
        """Acquire a session and mark it busy so the heartbeat leaves it alone"""
        session = await self.acquire(workflow_id, settings)
        session.busy += 1
        try:
            yield session
        finally:
            session.busy -= 1
            session.touch()

    def record_navigation(self, session: BrowserSession, url: str) -> None:
        session.last_url = url

    async def _open(self, workflow_id: str, settings: SessionSettings) -> BrowserSession:
        log_buffer: Deque[Dict[str, Any]] = deque(maxlen=LOG_BUFFER_SIZE)
        logger.info(f"Creating {self._config.connection_mode} browser session for workflow {workflow_id}")
        stagehand = await self._factory(settings, self._log_sink(log_buffer))

        session = BrowserSession(
            workflow_id=workflow_id,
            stagehand=stagehand,
            connection_mode=self._config.connection_mode,
            settings=settings,
            log_buffer=log_buffer,
        )
        self._sessions[workflow_id] = session
        self._start_heartbeat(session)
        return session

    async def _is_stale(self, session: BrowserSession) -> bool:
        if session.stale:
            logger.info(f"Session for workflow {session.workflow_id} was flagged stale")
            return True
        if self._config.idle_timeout > 0 and session.idle_seconds() > self._config.idle_timeout:
            logger.info(
                f"Session for workflow {session.workflow_id} idle for {session.idle_seconds():.0f}s, reconnecting"
            )
            return True
        if session.stagehand is None or not await probe_page(session.stagehand, self._config.heartbeat_timeout):
            logger.info(f"Session for workflow {session.workflow_id} did not answer, reconnecting")
            return True
        return False

    async def _close_handle(self, stagehand: Any, workflow_id: str) -> None:
        if stagehand is None:
            return
        try:
            await stagehand.close()
        except Exception as e:
            logger.warning(f"Error closing stale browser for workflow {workflow_id}: {e}")

    async def _reconnect(self, session: BrowserSession) -> None:
        """Replace the session's browser and load the last navigated URL again"""
        old_handle, session.stagehand = session.stagehand, None
        session.stale = True
        await self._close_handle(old_handle, session.workflow_id)

        session.stagehand = await self._factory(session.settings, self._log_sink(session.log_buffer))
        session.reconnect_count += 1
        session.heartbeat_failures = 0

        if session.last_url:
            logger.info(f"Restoring {session.last_url} for workflow {session.workflow_id}")
            await session.page.goto(session.last_url)

        session.stale = False
        logger.info(
            f"Reconnected session for workflow {session.workflow_id} (reconnects: {session.reconnect_count})"
        )

    def _start_heartbeat(self, session: BrowserSession) -> None:
        if self._config.heartbeat_interval <= 0:
            return
        session.heartbeat_task = asyncio.get_running_loop().create_task(
            self._heartbeat(session), name=f"heartbeat-{session.workflow_id}"
        )

    async def _heartbeat(self, session: BrowserSession) -> None:
        """Probe the session's page every interval until the session is closed"""
        while self._sessions.get(session.workflow_id) is session:
            await asyncio.sleep(self._config.heartbeat_interval)
            if self._sessions.get(session.workflow_id) is not session:
                break
            if session.busy:
                continue

            alive = not session.stale and await probe_page(session.stagehand, self._config.heartbeat_timeout)
            if alive or session.busy:
                session.heartbeat_failures = 0
                continue

            if not session.stale:
                session.heartbeat_failures += 1
                logger.warning(
                    f"Heartbeat failed for workflow {session.workflow_id} "
                    f"({session.heartbeat_failures}/{self._config.max_heartbeat_failures})"
                )
                if session.heartbeat_failures < self._config.max_heartbeat_failures:
                    continue
                session.stale = True

            async with self._locked(session.workflow_id):
                if self._sessions.get(session.workflow_id) is not session or not session.stale:
                    continue
                if session.busy:
                    # acquire() checked the page for the running operation
                    session.stale = False
                    session.heartbeat_failures = 0
                    continue
                try:
                    await self._reconnect(session)
                except Exception:
                    logger.exception(f"Heartbeat reconnect failed for workflow {session.workflow_id}")

    async def _stop_heartbeat(self, session: BrowserSession) -> None:
        task, session.heartbeat_task = session.heartbeat_task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def close(self, workflow_id: str) -> bool:
        """
        Close and forget the session of a workflow.

        Returns:
            True if a session existed
        """
        async with self._locked(workflow_id):
            session = self._sessions.pop(workflow_id, None)
            self._locks.pop(workflow_id, None)
            if session is None:
                return False

            await self._stop_heartbeat(session)
            logger.info(f"Closing browser session for workflow {workflow_id}")
            if session.stagehand is not None:
                await session.stagehand.close()
            return True

    async def close_all(self) -> None:
        for workflow_id in list(self._sessions):
            try:
                await self.close(workflow_id)
            except Exception as e:
                logger.warning(f"Error closing browser session for workflow {workflow_id}: {e}")

    def stats(self) -> List[Dict[str, Any]]:
        return [session.snapshot() for session in list(self._sessions.values())]


class BrowserRuntime:
    """Event loop on a daemon thread that outlives individual invocations"""

    def __init__(self, name: str = "stagehand-runtime"):
        self._name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _ensure_started(self) -> asyncio.AbstractEventLoop:
        with self._start_lock:
            if not self.running:
                self._loop = asyncio.new_event_loop()
                self._thread = threading.Thread(target=self._run_loop, args=(self._loop,), name=self._name, daemon=True)
                self._thread.start()
            return self._loop

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        loop.run_forever()

    def run(self, coro: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        """
        Run a coroutine on the runtime loop and wait for its result.

        Raises:
            TimeoutError: The coroutine did not finish within timeout seconds
        """
        loop = self._ensure_started()
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout)
        except TimeoutError:
            if future.done():
                raise
            future.cancel()
            raise TimeoutError(f"Browser operation did not finish within {timeout} seconds")

    def stop(self, timeout: float = 5.0) -> None:
        with self._start_lock:
            if not self.running:
                return
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout)
            self._loop.close()
            self._thread = None
            self._loop = None
