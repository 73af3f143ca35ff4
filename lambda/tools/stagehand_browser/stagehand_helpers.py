"""
Helper functions for building and driving Stagehand sessions.

This module centralizes the Stagehand configuration so the session manager
and the operations build sessions the same way.
"""

import asyncio
import dataclasses
from typing import Any, Callable, Dict, List, Optional

from aws_lambda_powertools import Logger
from pydantic import BaseModel
from stagehand import Stagehand, StagehandConfig

from config import ToolConfig

logger = Logger(service="stagehand-browser")

PROBE_SCRIPT = "() => document.readyState"


@dataclasses.dataclass
class SessionSettings:
    """Everything needed to open a Stagehand session for a workflow."""

    model_name: str
    api_key: str
    verbose: int = 0
    enable_caching: bool = True
    dom_settle_timeout_ms: int = 30000


def build_stagehand_config_kwargs(
    settings: SessionSettings,
    config: ToolConfig,
    log_callback: Optional[Callable[[Any], None]] = None,
) -> Dict[str, Any]:
    """
    Build StagehandConfig kwargs with consistent defaults.

    Args:
        settings: Model and behaviour settings for the session
        config: Tool configuration (connection mode, headless, Browserbase keys)
        log_callback: Receives every Stagehand log line

    Returns:
        Dictionary of kwargs ready to pass to StagehandConfig()
    """
    kwargs = {
        "env": config.connection_mode,
        "verbose": settings.verbose,
        "enable_caching": settings.enable_caching,
        "dom_settle_timeout_ms": settings.dom_settle_timeout_ms,
        "model_name": settings.model_name,
        "model_api_key": settings.api_key,
        "model_client_options": {"apiKey": settings.api_key},
        "use_rich_logging": False,
    }

    if config.connection_mode == "BROWSERBASE":
        if not config.browserbase_api_key or not config.browserbase_project_id:
            raise ValueError("BROWSERBASE_API_KEY and BROWSERBASE_PROJECT_ID are required in BROWSERBASE mode")
        kwargs["api_key"] = config.browserbase_api_key
        kwargs["project_id"] = config.browserbase_project_id
    else:
        kwargs["local_browser_launch_options"] = {"headless": config.headless}

    if log_callback is not None:
        kwargs["logger"] = log_callback

    return kwargs


async def create_stagehand(config_kwargs: Dict[str, Any]) -> Stagehand:
    """Construct and initialize a Stagehand instance"""
    stagehand = Stagehand(StagehandConfig(**config_kwargs))
    await stagehand.init()
    logger.info(f"Stagehand initialized ({config_kwargs.get('env')}, model {config_kwargs.get('model_name')})")
    return stagehand


async def probe_page(stagehand: Any, timeout: float) -> bool:
    """
    Check that the session's page still answers.

    Args:
        stagehand: Stagehand instance
        timeout: Seconds to wait for the page

    Returns:
        True if the page evaluated the probe script in time
    """
    page = getattr(stagehand, "page", None)
    if page is None:
        return False
    try:
        await asyncio.wait_for(page.evaluate(PROBE_SCRIPT), timeout=timeout)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.debug(f"Page probe failed: {e}")
        return False
    return True


def format_log_line(line: Any) -> Dict[str, Any]:
    """Normalize a Stagehand log line into a plain dict"""
    if isinstance(line, dict):
        return {key: to_jsonable(value) for key, value in line.items()}
    return {"message": str(line)}


def to_jsonable(value: Any) -> Any:
    """Convert Stagehand results into JSON-compatible values"""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def evaluate_expression(javascript_code: str) -> str:
    """Wrap a function expression so it is called with a list of arguments"""
    return f"(argv) => ({javascript_code})(...argv)"


def evaluate_arguments(arguments: Dict[str, Any]) -> List[Any]:
    return list(arguments.values())
