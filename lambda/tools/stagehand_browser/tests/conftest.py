# tests/conftest.py
import asyncio
import os
import sys
from dataclasses import dataclass

import pytest

# The tool is deployed as a flat Lambda asset, so tests import its modules by name
FUNCTION_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, FUNCTION_DIR)

os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "1")
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "stagehand-browser")
os.environ.setdefault("STAGEHAND_ENV", "LOCAL")

from config import ToolConfig  # noqa: E402
from stagehand_helpers import PROBE_SCRIPT, SessionSettings  # noqa: E402


class FakeAgent:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.executions = []

    async def execute(self, **kwargs):
        self.executions.append(kwargs)
        return {"success": True, "message": "Task completed", "completed": True}


class FakePage:
    def __init__(self):
        self.url = "about:blank"
        self.alive = True
        self.calls = []
        self.evaluate_result = None
        self.goto_error = None
        self.delay = 0
        self.probe_delay = 0
        self.failing_probes = 0

    async def goto(self, url):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.goto_error:
            raise self.goto_error
        self.calls.append(("goto", url))
        self.url = url

    async def act(self, instruction):
        self.calls.append(("act", instruction))
        return {"success": True, "message": f"Action performed: {instruction}", "action": instruction}

    async def extract(self, instruction, schema):
        self.calls.append(("extract", instruction, schema))
        return {"title": "Example Domain"}

    async def observe(self, instruction):
        self.calls.append(("observe", instruction))
        return [{"selector": "xpath=/html/body/div/p[2]/a", "description": "More information link"}]

    async def evaluate(self, expression, arg=None):
        if expression == PROBE_SCRIPT:
            fail = not self.alive or self.failing_probes > 0
            if self.failing_probes:
                self.failing_probes -= 1
            if self.probe_delay:
                await asyncio.sleep(self.probe_delay)
            if fail:
                raise RuntimeError("Target page, context or browser has been closed")
            return "complete"
        self.calls.append(("evaluate", expression, arg))
        return self.evaluate_result


class FakeStagehand:
    def __init__(self, settings, log_callback):
        self.settings = settings
        self.log_callback = log_callback
        self.page = FakePage()
        self.closed = False
        self.agents = []

    def agent(self, **kwargs):
        agent = FakeAgent(**kwargs)
        self.agents.append(agent)
        return agent

    async def close(self):
        self.closed = True


class FakeStagehandFactory:
    """Session factory handed to SessionRegistry in place of a real Stagehand"""

    def __init__(self):
        self.created = []
        self.error = None
        self.page_delay = 0

    async def __call__(self, settings, log_callback):
        if self.error:
            raise self.error
        stagehand = FakeStagehand(settings, log_callback)
        stagehand.page.delay = self.page_delay
        self.created.append(stagehand)
        return stagehand


@pytest.fixture
def factory():
    return FakeStagehandFactory()


@pytest.fixture
def tool_config():
    return ToolConfig(heartbeat_interval=0, heartbeat_timeout=1, idle_timeout=0)


@pytest.fixture
def settings():
    return SessionSettings(model_name="openai/gpt-4o", api_key="test-key")


@dataclass
class LambdaContext:
    function_name: str = "tool-stagehand-browser-test"
    memory_limit_in_mb: int = 2048
    invoked_function_arn: str = "arn:aws:lambda:us-west-2:123456789012:function:tool-stagehand-browser-test"
    aws_request_id: str = "52fdfc07-2182-154f-163f-5f0f9a621d72"


@pytest.fixture
def lambda_context():
    return LambdaContext()
