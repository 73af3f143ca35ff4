# This lambda function will be used as the stagehand_browser tool for the AI Agent platform

import json
from typing import Any, Dict

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.utilities.typing import LambdaContext

from config import DEFAULT_WORKFLOW_ID, ToolConfig
from errors import CredentialsError, UnsupportedOperationError
from operations import OPERATIONS, StagehandNode
from session_manager import BrowserRuntime, SessionRegistry

logger = Logger(service="stagehand-browser")
tracer = Tracer(service="stagehand-browser")

TOOL_NAME = "stagehand_browser"
REQUEST_KEYS = ("workflow_id", "ai_provider", "options")

# Module level so browser sessions survive between warm invocations
config = ToolConfig.from_env()
runtime = BrowserRuntime()
registry = SessionRegistry(config)
node = StagehandNode(registry, config)


def tool_use_to_request(tool_use: Dict[str, Any]) -> Dict[str, Any]:
    """
    Turn a tool_use event into a single-item request.

    The tool name is either the generic tool name with the operation in the
    input, or the operation itself.
    """
    tool_name = tool_use.get("name", TOOL_NAME)
    tool_input = dict(tool_use.get("input") or {})

    operation = tool_input.pop("operation", None)
    if not operation and tool_name in OPERATIONS:
        operation = tool_name
    if not operation:
        raise UnsupportedOperationError(f"Unknown tool name: {tool_name}")

    request = {key: tool_input.pop(key) for key in REQUEST_KEYS if key in tool_input}
    request["items"] = [{"operation": operation, **tool_input}]
    return request


async def _session_stats():
    return registry.stats()


@tracer.capture_method
def run_request(request: Dict[str, Any]):
    return runtime.run(node.execute(request), timeout=config.operation_timeout)


def handle_tool_use(tool_use: Dict[str, Any]) -> Dict[str, Any]:
    tool_name = tool_use.get("name", TOOL_NAME)
    logger.info(f"Tool name: {tool_name}")

    try:
        output = run_request(tool_use_to_request(tool_use))[0]
        content = output["json"]
        if "error" in output:
            content = {**content, "error": output["error"]}
    except (CredentialsError, UnsupportedOperationError, ValueError, TimeoutError) as e:
        logger.error(f"Tool call failed: {e}")
        content = {"error": str(e)}

    return {
        "type": "tool_result",
        "name": tool_name,
        "tool_use_id": tool_use.get("id"),
        "content": json.dumps(content),
    }


def handle_batch(event: Dict[str, Any]) -> Dict[str, Any]:
    try:
        results = run_request(event)
    except CredentialsError as e:
        logger.error(str(e))
        return {"statusCode": 400, "error": str(e)}
    except ValueError as e:
        return {"statusCode": 400, "error": str(e)}
    except TimeoutError as e:
        logger.error(str(e))
        return {"statusCode": 504, "error": str(e)}

    return {
        "statusCode": 200,
        "workflow_id": event.get("workflow_id") or DEFAULT_WORKFLOW_ID,
        "results": results,
        "sessions": runtime.run(_session_stats(), timeout=config.operation_timeout),
    }


@logger.inject_lambda_context
@tracer.capture_lambda_handler
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Lambda handler for the Stagehand browser tool

    Accepts either a tool_use event from an agent or a batch event:
    {
        "workflow_id": "...",
        "ai_provider": "openai" | "anthropic" | "google" | "cerebras",
        "options": {...},
        "items": [{"operation": "navigate", "url": "..."}, ...]
    }
    """
    if event.get("type") == "tool_use":
        return handle_tool_use(event)
    return handle_batch(event)
