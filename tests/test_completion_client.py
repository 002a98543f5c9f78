"""
Tests for the structured completion client (OpenAI mocked).
"""

import httpx
import openai
import pytest
from unittest.mock import Mock

from app.services.completion_client import CompletionClient, get_completion_client
from app.services.errors import CompletionTimeoutError, ExternalServiceError


def completion(content):
    message = Mock()
    message.content = content
    choice = Mock()
    choice.message = message
    response = Mock()
    response.choices = [choice]
    return response


def timeout_error():
    return openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))


@pytest.fixture
def openai_client():
    return Mock()


@pytest.fixture
def client(openai_client):
    c = CompletionClient(model="gpt-4o", timeout=5, api_key="test-key")
    c._client = openai_client
    return c


class TestCompleteJson:

    def test_returns_content(self, client, openai_client):
        openai_client.chat.completions.create.return_value = completion('{"ok": true}')

        assert client.complete_json("system", "user") == '{"ok": true}'

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}
        assert kwargs["messages"][1] == {"role": "user", "content": "user"}

    def test_timeout_retried_once_then_succeeds(self, client, openai_client):
        openai_client.chat.completions.create.side_effect = [timeout_error(), completion("{}")]

        assert client.complete_json("system", "user") == "{}"
        assert openai_client.chat.completions.create.call_count == 2

    def test_timeout_twice_raises(self, client, openai_client):
        openai_client.chat.completions.create.side_effect = [timeout_error(), timeout_error(), completion("{}")]

        with pytest.raises(CompletionTimeoutError):
            client.complete_json("system", "user")
        assert openai_client.chat.completions.create.call_count == 2

    def test_timeout_error_is_external_service_error(self):
        assert issubclass(CompletionTimeoutError, ExternalServiceError)
        assert CompletionTimeoutError.status_code == 504

    def test_other_errors_not_retried(self, client, openai_client):
        openai_client.chat.completions.create.side_effect = openai.OpenAIError("quota exceeded")

        with pytest.raises(ExternalServiceError) as exc_info:
            client.complete_json("system", "user")
        assert not isinstance(exc_info.value, CompletionTimeoutError)
        assert openai_client.chat.completions.create.call_count == 1

    def test_empty_content_raises(self, client, openai_client):
        openai_client.chat.completions.create.return_value = completion(None)

        with pytest.raises(ExternalServiceError):
            client.complete_json("system", "user")

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr("app.services.completion_client.OPENAI_API_KEY", None)
        c = CompletionClient(api_key=None)

        with pytest.raises(ExternalServiceError):
            c.complete_json("system", "user")


class TestGetCompletionClient:

    def test_uses_app_client(self, app):
        assert get_completion_client() is app.extensions["completion_client"]

    def test_app_client_configured_from_config(self, app):
        c = app.extensions["completion_client"]
        assert c.model == app.config["OPENAI_MODEL"]
        assert c.timeout == app.config["COMPLETION_TIMEOUT_SECONDS"]
