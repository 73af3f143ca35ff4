"""
Provider credentials for the Stagehand browser tool

API keys live in the consolidated tool secret under the tool's own section:
{
    "stagehand_browser": {
        "OPENAI_API_KEY": "...",
        "ANTHROPIC_API_KEY": "...",
        "GEMINI_API_KEY": "...",
        "CEREBRAS_API_KEY": "...",
        "BROWSERBASE_API_KEY": "...",
        "BROWSERBASE_PROJECT_ID": "..."
    },
    ...
}
Environment variables with the same names are used when the secret has no value.
"""

import os
from typing import Any, Dict, Optional, Tuple

import anthropic
import openai
import requests
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities import parameters
from google import genai

from config import PROVIDER_SECRET_KEYS, ToolConfig
from errors import CredentialsError

logger = Logger(service="stagehand-browser")

CEREBRAS_BASE_URL = "https://api.cerebras.ai/v1"
SECRET_MAX_AGE_SECONDS = 300


def _load_tool_secrets(config: ToolConfig) -> Dict[str, Any]:
    """Fetch the tool section of the consolidated secret (cached by Powertools)"""
    consolidated_secret = parameters.get_secret(
        config.secret_name, transform="json", max_age=SECRET_MAX_AGE_SECONDS
    )
    return (consolidated_secret or {}).get(config.tool_secret_key, {}) or {}


def _usable(value: Any) -> bool:
    return bool(value) and not str(value).startswith("PLACEHOLDER_")


def get_provider_api_key(provider: str, config: ToolConfig) -> str:
    """
    Get the API key for the selected AI provider.

    Args:
        provider: One of openai, anthropic, google, cerebras
        config: Tool configuration holding the secret location

    Returns:
        The API key

    Raises:
        CredentialsError: The provider is unknown or has no key configured
    """
    secret_key = PROVIDER_SECRET_KEYS.get(provider)
    if not secret_key:
        raise CredentialsError(
            f"Unsupported AI provider: {provider}. Must be one of {', '.join(PROVIDER_SECRET_KEYS)}"
        )

    secret_error = None
    try:
        tool_secrets = _load_tool_secrets(config)
    except Exception as e:
        logger.warning(f"Could not read tool secret {config.secret_name}: {e}")
        secret_error = e
        tool_secrets = {}

    api_key = tool_secrets.get(secret_key)
    if not _usable(api_key):
        api_key = os.environ.get(secret_key)

    if _usable(api_key):
        logger.info(f"Using {provider} credentials")
        return api_key

    if secret_error is not None:
        raise CredentialsError(
            f"Failed to get {provider} credentials. Please configure the {provider} API "
            f"credentials ({secret_key}) in {config.secret_name}."
        ) from secret_error
    raise CredentialsError(
        f"No API key found for {provider}. Please configure the {provider} API credentials ({secret_key})."
    )


def get_browserbase_credentials(config: ToolConfig) -> Tuple[Optional[str], Optional[str]]:
    """
    Get the Browserbase API key and project id for remote sessions.

    Values already set in the environment win over the tool secret.
    """
    api_key, project_id = config.browserbase_api_key, config.browserbase_project_id
    if api_key and project_id:
        return api_key, project_id

    try:
        tool_secrets = _load_tool_secrets(config)
    except Exception as e:
        logger.warning(f"Could not read tool secret {config.secret_name}: {e}")
        tool_secrets = {}

    if not _usable(api_key):
        api_key = tool_secrets.get("BROWSERBASE_API_KEY")
    if not _usable(project_id):
        project_id = tool_secrets.get("BROWSERBASE_PROJECT_ID")
    return (api_key if _usable(api_key) else None), (project_id if _usable(project_id) else None)


def _count_models(provider: str, api_key: str) -> int:
    if provider == "openai":
        return len(openai.OpenAI(api_key=api_key).models.list().data)
    if provider == "anthropic":
        return len(anthropic.Anthropic(api_key=api_key).models.list().data)
    if provider == "google":
        return len(list(genai.Client(api_key=api_key).models.list()))
    if provider == "cerebras":
        response = requests.get(
            f"{CEREBRAS_BASE_URL}/models",
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=10,
        )
        response.raise_for_status()
        return len(response.json().get("data", []))
    raise CredentialsError(f"Unsupported AI provider: {provider}")


def verify_provider_credentials(provider: str, api_key: str) -> Dict[str, Any]:
    """
    Check an API key by listing the provider's models.

    Args:
        provider: AI provider name
        api_key: Key to check

    Returns:
        Dict with provider, valid flag and either model_count or error
    """
    try:
        model_count = _count_models(provider, api_key)
    except CredentialsError:
        raise
    except Exception as e:
        logger.warning(f"Credential check failed for {provider}: {e}")
        return {"provider": provider, "valid": False, "error": str(e)}

    logger.info(f"Credential check passed for {provider} ({model_count} models)")
    return {"provider": provider, "valid": True, "model_count": model_count}
