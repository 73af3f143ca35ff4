"""
Configuration for the Stagehand browser tool.

Runtime settings come from the Lambda environment, per-request settings
come from the "options" collection of the tool input.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


PROVIDER_DEFAULT_MODELS = {
    "openai": "openai/gpt-4o",
    "anthropic": "anthropic/claude-3-5-sonnet-latest",
    "google": "google/gemini-2.5-flash",
    "cerebras": "cerebras/llama-3.3-70b",
}

# Key names inside the consolidated tool secret (and env var fallbacks)
PROVIDER_SECRET_KEYS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GEMINI_API_KEY",
    "cerebras": "CEREBRAS_API_KEY",
}

DEFAULT_PROVIDER = "openai"
DEFAULT_WORKFLOW_ID = "default"
AGENT_INSTRUCTIONS = "You are a helpful web automation assistant."

# Models offered in the tool schema; agent=True marks computer-use models
MODEL_CHOICES = [
    {"name": "OpenAI: GPT-4.1", "value": "openai/gpt-4.1", "agent": False},
    {"name": "OpenAI: GPT-4o", "value": "openai/gpt-4o", "agent": False},
    {"name": "OpenAI: Computer Use Preview", "value": "computer-use-preview", "agent": True},
    {"name": "Anthropic: Claude 3.7 Sonnet", "value": "anthropic/claude-3-7-sonnet-latest", "agent": False},
    {"name": "Anthropic: Claude 3.5 Sonnet", "value": "anthropic/claude-3-5-sonnet-latest", "agent": False},
    {"name": "Anthropic: Claude Sonnet 4", "value": "claude-sonnet-4-20250514", "agent": True},
    {"name": "Google: Gemini 2.5 Flash", "value": "google/gemini-2.5-flash", "agent": False},
    {"name": "Google: Gemini 2.5 Pro", "value": "google/gemini-2.5-pro", "agent": False},
    {"name": "Google: Gemini 2.5 Computer Use Preview", "value": "gemini-2.5-computer-use-preview-10-2025", "agent": True},
    {"name": "Cerebras: Llama 3.3 70B", "value": "cerebras/llama-3.3-70b", "agent": False},
]

CONNECTION_MODES = ("LOCAL", "BROWSERBASE")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class ToolConfig:
    """Configuration for the tool runtime and its session manager."""

    environment: str = "prod"
    secret_name: str = "/ai-agent/tool-secrets/prod"
    tool_secret_key: str = "stagehand_browser"
    connection_mode: str = "LOCAL"
    headless: bool = False
    browserbase_api_key: Optional[str] = None
    browserbase_project_id: Optional[str] = None
    heartbeat_interval: float = 30.0
    heartbeat_timeout: float = 5.0
    max_heartbeat_failures: int = 3
    idle_timeout: float = 900.0
    operation_timeout: float = 600.0

    @classmethod
    def from_env(cls) -> "ToolConfig":
        """Create config from environment variables."""
        environment = os.getenv("ENVIRONMENT", "prod")
        connection_mode = os.getenv("STAGEHAND_ENV", "LOCAL").upper()
        if connection_mode not in CONNECTION_MODES:
            raise ValueError(
                f"Invalid STAGEHAND_ENV: {connection_mode}. Must be one of {', '.join(CONNECTION_MODES)}"
            )

        return cls(
            environment=environment,
            secret_name=os.getenv("CONSOLIDATED_SECRET_NAME", f"/ai-agent/tool-secrets/{environment}"),
            tool_secret_key=os.getenv("TOOL_SECRET_KEY", "stagehand_browser"),
            connection_mode=connection_mode,
            headless=_env_bool("STAGEHAND_HEADLESS", "false"),
            browserbase_api_key=os.getenv("BROWSERBASE_API_KEY"),
            browserbase_project_id=os.getenv("BROWSERBASE_PROJECT_ID"),
            heartbeat_interval=float(os.getenv("SESSION_HEARTBEAT_SECONDS", "30")),
            heartbeat_timeout=float(os.getenv("SESSION_HEARTBEAT_TIMEOUT", "5")),
            max_heartbeat_failures=int(os.getenv("SESSION_MAX_HEARTBEAT_FAILURES", "3")),
            idle_timeout=float(os.getenv("SESSION_IDLE_TIMEOUT_SECONDS", "900")),
            operation_timeout=float(os.getenv("OPERATION_TIMEOUT_SECONDS", "600")),
        )


# camelCase option names accepted from the tool input
_OPTION_ALIASES = {
    "modelName": "model_name",
    "enableCaching": "enable_caching",
    "logMessages": "log_messages",
    "domSettleTimeoutMs": "dom_settle_timeout_ms",
    "waitBetweenActions": "wait_between_actions",
}


@dataclass
class NodeOptions:
    """Advanced options sent with a request."""

    model_name: str = ""
    enable_caching: bool = True
    log_messages: bool = False
    verbose: int = 0
    dom_settle_timeout_ms: int = 30000
    wait_between_actions: int = 0

    @classmethod
    def from_event(cls, options: Optional[Dict[str, Any]]) -> "NodeOptions":
        """
        Build options from the request, accepting snake_case or camelCase keys.

        Args:
            options: The "options" object of the request, may be None

        Returns:
            NodeOptions with defaults applied for missing keys
        """
        normalized = {}
        for key, value in (options or {}).items():
            normalized[_OPTION_ALIASES.get(key, key)] = value

        verbose = int(normalized.get("verbose", 0))
        if verbose not in (0, 1, 2):
            raise ValueError(f"Invalid verbose level: {verbose}. Must be 0, 1 or 2")

        return cls(
            model_name=normalized.get("model_name") or "",
            enable_caching=bool(normalized.get("enable_caching", True)),
            log_messages=bool(normalized.get("log_messages", False)),
            verbose=verbose,
            dom_settle_timeout_ms=int(normalized.get("dom_settle_timeout_ms", 30000)),
            wait_between_actions=int(normalized.get("wait_between_actions", 0)),
        )


def resolve_model_name(provider: str, custom_model: Optional[str] = None) -> str:
    """
    Pick the model for a provider and qualify it with the provider prefix.

    Args:
        provider: AI provider selected for the request
        custom_model: Model chosen in the options, empty for the default

    Returns:
        Model name in "provider/model" form
    """
    model_name = custom_model or PROVIDER_DEFAULT_MODELS.get(provider, "")
    if not model_name:
        raise ValueError(f"No default model for provider: {provider}")
    if "/" in model_name:
        return model_name
    return f"{provider}/{model_name}"


def split_agent_model(provider: str, full_model_name: str) -> Tuple[str, str]:
    """Split "provider/model" into the pair the agent API expects."""
    if "/" not in full_model_name:
        return provider, full_model_name

    agent_provider, _, agent_model = full_model_name.partition("/")
    return agent_provider or DEFAULT_PROVIDER, agent_model or full_model_name
