"""
Stagehand browser operations

Each request names a workflow, an AI provider, advanced options and a list of
items. Every item runs one operation against the workflow's browser session;
a failing item is reported in its own output and the remaining items still run.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from aws_lambda_powertools import Logger

from config import (
    AGENT_INSTRUCTIONS,
    DEFAULT_PROVIDER,
    DEFAULT_WORKFLOW_ID,
    NodeOptions,
    ToolConfig,
    resolve_model_name,
    split_agent_model,
)
from credentials import get_provider_api_key, verify_provider_credentials
from errors import UnsupportedOperationError
from schema_builder import build_schema
from session_manager import BrowserSession, SessionRegistry
from stagehand_helpers import SessionSettings, evaluate_arguments, evaluate_expression, to_jsonable

logger = Logger(service="stagehand-browser")

OPERATIONS = (
    "navigate",
    "act",
    "extract",
    "observe",
    "agentExecute",
    "evaluate",
    "closeSession",
    "verifyCredentials",
)

# Operations that run without opening a browser session
SESSIONLESS_OPERATIONS = ("closeSession", "verifyCredentials")


@dataclass
class ExecutionContext:
    """Values shared by all items of one request"""

    workflow_id: str
    ai_provider: str
    api_key: str
    settings: SessionSettings
    options: NodeOptions


def _required(params: Dict[str, Any], name: str) -> Any:
    value = params.get(name)
    if value is None or value == "":
        raise ValueError(f"Missing required parameter: {name}")
    return value


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in Arguments: {e}") from e
    if not isinstance(raw, dict):
        raise ValueError("Invalid JSON in Arguments: expected an object")
    return raw


class StagehandNode:
    """Runs tool requests against per-workflow Stagehand sessions."""

    def __init__(
        self,
        registry: SessionRegistry,
        config: ToolConfig,
        api_key_resolver: Callable[[str, ToolConfig], str] = get_provider_api_key,
    ):
        self._registry = registry
        self._config = config
        self._api_key_resolver = api_key_resolver
        self._handlers = {
            "navigate": self._navigate,
            "act": self._act,
            "extract": self._extract,
            "observe": self._observe,
            "agentExecute": self._agent_execute,
            "evaluate": self._evaluate,
            "closeSession": self._close_session,
            "verifyCredentials": self._verify_credentials,
        }

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    async def execute(self, request: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Run every item of a request.

        Args:
            request: Dict with workflow_id, ai_provider, options and items

        Returns:
            One output per item: {"json": {...}} or {"json": {...}, "error": "..."}

        Raises:
            CredentialsError: No API key for the selected provider
        """
        ai_provider = request.get("ai_provider") or DEFAULT_PROVIDER
        options = NodeOptions.from_event(request.get("options"))

        api_key = await asyncio.to_thread(self._api_key_resolver, ai_provider, self._config)
        context = ExecutionContext(
            workflow_id=str(request.get("workflow_id") or DEFAULT_WORKFLOW_ID),
            ai_provider=ai_provider,
            api_key=api_key,
            settings=SessionSettings(
                model_name=resolve_model_name(ai_provider, options.model_name),
                api_key=api_key,
                verbose=options.verbose,
                enable_caching=options.enable_caching,
                dom_settle_timeout_ms=options.dom_settle_timeout_ms,
            ),
            options=options,
        )

        items = request.get("items") or []
        logger.info(f"Executing {len(items)} item(s) for workflow {context.workflow_id} with {context.settings.model_name}")
        return [await self._execute_item(context, item) for item in items]

    async def _execute_item(self, context: ExecutionContext, item: Dict[str, Any]) -> Dict[str, Any]:
        operation = item.get("operation") or "navigate"
        messages: List[Dict[str, Any]] = []

        try:
            handler = self._handlers.get(operation)
            if handler is None:
                raise UnsupportedOperationError(f"Unsupported operation: {operation}")

            if operation in SESSIONLESS_OPERATIONS:
                output = await handler(context, item, None)
            else:
                async with self._registry.session(context.workflow_id, context.settings) as session:
                    try:
                        output = await handler(context, item, session)
                    finally:
                        messages = session.drain_logs()

            result = {"operation": operation, **output}
            if context.options.log_messages:
                result["messages"] = messages
            return {"json": result}

        except Exception as e:
            logger.error(f"Operation {operation} failed for workflow {context.workflow_id}: {e}")
            result = {"operation": operation}
            if context.options.log_messages:
                result["messages"] = messages
            return {"json": result, "error": f"Error executing Stagehand operation: {e}"}

    async def _navigate(self, context: ExecutionContext, params: Dict[str, Any], session: BrowserSession) -> Dict[str, Any]:
        url = _required(params, "url")
        await session.page.goto(url)
        self._registry.record_navigation(session, url)
        return {"url": url, "success": True}

    async def _act(self, context: ExecutionContext, params: Dict[str, Any], session: BrowserSession) -> Dict[str, Any]:
        result = await session.page.act(_required(params, "instruction"))
        return {"result": to_jsonable(result)}

    async def _extract(self, context: ExecutionContext, params: Dict[str, Any], session: BrowserSession) -> Dict[str, Any]:
        instruction = _required(params, "instruction")
        schema = build_schema(params.get("schemaSource") or "fieldList", params)
        result = await session.page.extract(instruction=instruction, schema=schema)
        return {"result": to_jsonable(result)}

    async def _observe(self, context: ExecutionContext, params: Dict[str, Any], session: BrowserSession) -> Dict[str, Any]:
        result = await session.page.observe(instruction=_required(params, "instruction"))
        return {"result": to_jsonable(result)}

    async def _agent_execute(self, context: ExecutionContext, params: Dict[str, Any], session: BrowserSession) -> Dict[str, Any]:
        instruction = _required(params, "instruction")
        max_steps = int(params.get("maxSteps", 20))
        auto_screenshot = bool(params.get("autoScreenshot", True))
        provider, model = split_agent_model(context.ai_provider, context.settings.model_name)

        agent = session.stagehand.agent(
            provider=provider,
            model=model,
            instructions=AGENT_INSTRUCTIONS,
            options={"apiKey": context.api_key},
        )
        result = await agent.execute(
            instruction=instruction,
            max_steps=max_steps,
            auto_screenshot=auto_screenshot,
            wait_between_actions=context.options.wait_between_actions,
        )
        return {"result": to_jsonable(result)}

    async def _evaluate(self, context: ExecutionContext, params: Dict[str, Any], session: BrowserSession) -> Dict[str, Any]:
        javascript_code = _required(params, "javascriptCode")
        arguments = _parse_arguments(params.get("evaluateArguments", "{}"))
        result = await session.page.evaluate(evaluate_expression(javascript_code), evaluate_arguments(arguments))
        return {"result": to_jsonable(result), "arguments": arguments}

    async def _close_session(self, context: ExecutionContext, params: Dict[str, Any], session: Optional[BrowserSession]) -> Dict[str, Any]:
        if await self._registry.close(context.workflow_id):
            return {"success": True, "message": "Browser session closed successfully"}
        return {"success": True, "message": "No active browser session for this workflow"}

    async def _verify_credentials(self, context: ExecutionContext, params: Dict[str, Any], session: Optional[BrowserSession]) -> Dict[str, Any]:
        result = await asyncio.to_thread(verify_provider_credentials, context.ai_provider, context.api_key)
        return {"result": result}
