import json

import pytest

import index
from config import ToolConfig
from errors import CredentialsError
from operations import StagehandNode
from session_manager import SessionRegistry


@pytest.fixture(autouse=True)
def fake_node(monkeypatch, factory, tool_config):
    registry = SessionRegistry(tool_config, factory)
    node = StagehandNode(registry, tool_config, api_key_resolver=lambda provider, config: "test-key")
    monkeypatch.setattr(index, "registry", registry)
    monkeypatch.setattr(index, "node", node)
    return node


@pytest.fixture
def navigate_event():
    return {
        "id": "uniquetooluseid",
        "input": {
            "operation": "navigate",
            "url": "https://example.com",
            "workflow_id": "wf-tool",
        },
        "name": "stagehand_browser",
        "type": "tool_use"
    }


def test_lambda_handler(navigate_event, lambda_context, factory):
    response = index.lambda_handler(navigate_event, lambda_context)

    assert response["type"] == "tool_result"
    assert response["tool_use_id"] == "uniquetooluseid"
    assert response["name"] == "stagehand_browser"
    content = json.loads(response["content"])
    assert content == {"operation": "navigate", "url": "https://example.com", "success": True}
    assert factory.created[0].page.url == "https://example.com"


def test_tool_name_can_be_the_operation(lambda_context, factory):
    response = index.lambda_handler({
        "id": "act-1",
        "name": "act",
        "input": {"instruction": "accept the cookie banner", "workflow_id": "wf-tool"},
        "type": "tool_use",
    }, lambda_context)

    content = json.loads(response["content"])
    assert content["operation"] == "act"
    assert content["result"]["action"] == "accept the cookie banner"


def test_operation_error_is_returned_as_content(lambda_context):
    response = index.lambda_handler({
        "id": "nav-1",
        "name": "stagehand_browser",
        "input": {"operation": "navigate"},
        "type": "tool_use",
    }, lambda_context)

    content = json.loads(response["content"])
    assert content["error"] == "Error executing Stagehand operation: Missing required parameter: url"


def test_unknown_tool_name(lambda_context):
    response = index.lambda_handler({
        "id": "x",
        "name": "screenshot",
        "input": {},
        "type": "tool_use",
    }, lambda_context)

    assert json.loads(response["content"]) == {"error": "Unknown tool name: screenshot"}


def test_batch_event(lambda_context, factory):
    response = index.lambda_handler({
        "workflow_id": "wf-batch",
        "ai_provider": "openai",
        "options": {"logMessages": False},
        "items": [
            {"operation": "navigate", "url": "https://example.com"},
            {"operation": "observe", "instruction": "find the more information link"},
        ],
    }, lambda_context)

    assert response["statusCode"] == 200
    assert response["workflow_id"] == "wf-batch"
    assert [result["json"]["operation"] for result in response["results"]] == ["navigate", "observe"]
    [session] = response["sessions"]
    assert session["workflow_id"] == "wf-batch"
    assert session["last_url"] == "https://example.com"
    assert len(factory.created) == 1


def test_batch_credentials_error(monkeypatch, lambda_context, factory, tool_config):
    def no_key(provider, config):
        raise CredentialsError(f"No API key found for {provider}. Please configure the {provider} API credentials.")

    monkeypatch.setattr(index, "node", StagehandNode(index.registry, tool_config, api_key_resolver=no_key))

    response = index.lambda_handler({
        "ai_provider": "anthropic",
        "items": [{"operation": "navigate", "url": "https://example.com"}],
    }, lambda_context)

    assert response["statusCode"] == 400
    assert response["error"].startswith("No API key found for anthropic")
    assert factory.created == []


def test_tool_use_credentials_error(monkeypatch, navigate_event, lambda_context, factory, tool_config):
    def no_key(provider, config):
        raise CredentialsError(f"No API key found for {provider}. Please configure the {provider} API credentials.")

    monkeypatch.setattr(index, "node", StagehandNode(index.registry, tool_config, api_key_resolver=no_key))

    response = index.lambda_handler(navigate_event, lambda_context)

    assert response["type"] == "tool_result"
    assert json.loads(response["content"]) == {
        "error": "No API key found for openai. Please configure the openai API credentials."
    }
    assert factory.created == []


@pytest.fixture
def slow_browser(monkeypatch, factory):
    factory.page_delay = 1
    monkeypatch.setattr(index, "config", ToolConfig(operation_timeout=0.05))


def test_batch_timeout(slow_browser, lambda_context):
    response = index.lambda_handler({
        "workflow_id": "wf-slow",
        "items": [{"operation": "navigate", "url": "https://example.com"}],
    }, lambda_context)

    assert response == {
        "statusCode": 504,
        "error": "Browser operation did not finish within 0.05 seconds",
    }


def test_tool_use_timeout(slow_browser, navigate_event, lambda_context):
    response = index.lambda_handler(navigate_event, lambda_context)

    assert json.loads(response["content"]) == {"error": "Browser operation did not finish within 0.05 seconds"}
