"""Tests for pathweaver.llm: ProviderClient and response interpretation."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from pathweaver.errors import (
    AuthError,
    ProviderRequestError,
    ProviderServerError,
    TransportError,
)
from pathweaver.llm import (
    ProviderClient,
    ProviderResponse,
    parse_assistant_message,
    raise_for_provider_status,
)


def _mock_response(body, status: int = 200, headers: dict | None = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    if isinstance(body, str):
        resp.json.side_effect = ValueError("not json")
        resp.text = body
    else:
        resp.json.return_value = body
        resp.text = json.dumps(body)
    return resp


def _completion(content: str = "", tool_calls: list | None = None) -> dict:
    message = {"role": "assistant", "content": content}
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    return {"choices": [{"message": message}]}


# ---------------------------------------------------------------------------
# ProviderClient.chat
# ---------------------------------------------------------------------------

class TestProviderClientChat:
    @pytest.fixture
    def client(self) -> ProviderClient:
        return ProviderClient(base_url="https://llm.test/v1/", api_key="secret")

    async def test_posts_to_chat_completions(self, client: ProviderClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_completion("hi")))
        with patch("httpx.AsyncClient.post", mock_post):
            await client.chat("llama-3.3-70b-versatile", [{"role": "user", "content": "go"}])
        url = mock_post.call_args[0][0]
        assert url == "https://llm.test/v1/chat/completions"

    async def test_bearer_token_sent(self, client: ProviderClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_completion("hi")))
        with patch("httpx.AsyncClient.post", mock_post):
            await client.chat("m", [])
        headers = mock_post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer secret"

    async def test_body_without_tools(self, client: ProviderClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_completion("hi")))
        messages = [{"role": "user", "content": "go"}]
        with patch("httpx.AsyncClient.post", mock_post):
            await client.chat("m", messages)
        body = mock_post.call_args.kwargs["json"]
        assert body["model"] == "m"
        assert body["messages"] == messages
        assert "tools" not in body
        assert "tool_choice" not in body
        assert body["temperature"] == 0.8

    async def test_body_with_tools_and_choice(self, client: ProviderClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_completion("hi")))
        tools = [{"type": "function", "function": {"name": "x"}}]
        with patch("httpx.AsyncClient.post", mock_post):
            await client.chat("m", [], tools, "required")
        body = mock_post.call_args.kwargs["json"]
        assert body["tools"] == tools
        assert body["tool_choice"] == "required"

    async def test_returns_non_2xx_without_raising(self, client: ProviderClient) -> None:
        error = {"error": {"message": "Rate limit reached. Please try again in 2.5s"}}
        mock_post = AsyncMock(return_value=_mock_response(
            error, status=429, headers={"X-RateLimit-Remaining-Requests": "0"},
        ))
        with patch("httpx.AsyncClient.post", mock_post):
            resp = await client.chat("m", [])
        assert resp.status_code == 429
        assert not resp.ok
        assert resp.headers["x-ratelimit-remaining-requests"] == "0"
        assert resp.error_message.startswith("Rate limit reached")

    async def test_missing_api_key_raises_before_io(self) -> None:
        client = ProviderClient(base_url="https://llm.test/v1", api_key="")
        mock_post = AsyncMock()
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(AuthError, match="LLM_API_KEY"):
                await client.chat("m", [])
        mock_post.assert_not_called()

    async def test_connect_error(self, client: ProviderClient) -> None:
        mock_post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(TransportError, match="Cannot connect"):
                await client.chat("m", [])

    async def test_timeout(self, client: ProviderClient) -> None:
        mock_post = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(TransportError, match="timed out") as exc:
                await client.chat("m", [])
        assert exc.value.retryable is True

    async def test_non_json_body_kept_as_text(self, client: ProviderClient) -> None:
        mock_post = AsyncMock(return_value=_mock_response("<html>Bad Gateway</html>", status=502))
        with patch("httpx.AsyncClient.post", mock_post):
            resp = await client.chat("m", [])
        assert resp.data is None
        assert resp.error_message == "<html>Bad Gateway</html>"


# ---------------------------------------------------------------------------
# ProviderClient.list_models
# ---------------------------------------------------------------------------

class TestProviderClientListModels:
    async def test_returns_data_list(self) -> None:
        client = ProviderClient(base_url="https://llm.test/v1", api_key="k")
        models = [{"id": "llama-3.3-70b-versatile", "max_completion_tokens": 32768}]
        mock_get = AsyncMock(return_value=_mock_response({"object": "list", "data": models}))
        with patch("httpx.AsyncClient.get", mock_get):
            result = await client.list_models()
        assert result == models
        assert mock_get.call_args[0][0] == "https://llm.test/v1/models"

    async def test_bad_format(self) -> None:
        client = ProviderClient(base_url="https://llm.test/v1", api_key="k")
        mock_get = AsyncMock(return_value=_mock_response({"models": []}))
        with patch("httpx.AsyncClient.get", mock_get):
            with pytest.raises(ProviderRequestError, match="models endpoint"):
                await client.list_models()

    async def test_auth_rejected(self) -> None:
        client = ProviderClient(base_url="https://llm.test/v1", api_key="bad")
        mock_get = AsyncMock(return_value=_mock_response(
            {"error": {"message": "Invalid API Key"}}, status=401,
        ))
        with patch("httpx.AsyncClient.get", mock_get):
            with pytest.raises(AuthError, match="Invalid API Key"):
                await client.list_models()


# ---------------------------------------------------------------------------
# Status mapping and message parsing
# ---------------------------------------------------------------------------

class TestRaiseForProviderStatus:
    def test_ok_passes(self) -> None:
        raise_for_provider_status(ProviderResponse(status_code=200))

    def test_429_left_to_monitor(self) -> None:
        raise_for_provider_status(ProviderResponse(status_code=429))

    def test_403_is_auth(self) -> None:
        with pytest.raises(AuthError):
            raise_for_provider_status(ProviderResponse(status_code=403, text="forbidden"))

    def test_5xx_is_server_error(self) -> None:
        with pytest.raises(ProviderServerError) as exc:
            raise_for_provider_status(ProviderResponse(status_code=503, text="overloaded"))
        assert exc.value.status_code == 503
        assert exc.value.retryable is True

    def test_400_is_request_error(self) -> None:
        resp = ProviderResponse(status_code=400, data={"error": {"message": "bad tool_choice"}})
        with pytest.raises(ProviderRequestError, match="HTTP 400: bad tool_choice"):
            raise_for_provider_status(resp)


class TestParseAssistantMessage:
    def test_plain_text(self) -> None:
        msg = parse_assistant_message(ProviderResponse(200, data=_completion("The door creaks.")))
        assert msg.content == "The door creaks."
        assert msg.tool_calls == []

    def test_null_content_with_tool_calls(self) -> None:
        data = _completion(tool_calls=[{
            "id": "call_1",
            "type": "function",
            "function": {"name": "update_dynamic_component", "arguments": '{"code": "x"}'},
        }])
        data["choices"][0]["message"]["content"] = None
        msg = parse_assistant_message(ProviderResponse(200, data=data))
        assert msg.content == ""
        assert msg.tool_calls[0].id == "call_1"
        assert msg.tool_calls[0].arguments == '{"code": "x"}'

    def test_object_arguments_are_serialized(self) -> None:
        data = _completion(tool_calls=[{
            "id": "call_1",
            "function": {"name": "update_dynamic_component", "arguments": {"code": "x"}},
        }])
        msg = parse_assistant_message(ProviderResponse(200, data=data))
        assert json.loads(msg.tool_calls[0].arguments) == {"code": "x"}

    def test_missing_choices(self) -> None:
        with pytest.raises(ProviderRequestError, match="Unexpected response format"):
            parse_assistant_message(ProviderResponse(200, data={"id": "x"}))

    @pytest.mark.parametrize("message", [
        "just a string",
        {"content": "", "tool_calls": "oops"},
    ])
    def test_malformed_message(self, message) -> None:
        data = {"choices": [{"message": message}]}
        with pytest.raises(ProviderRequestError, match="Unexpected response format"):
            parse_assistant_message(ProviderResponse(200, data=data))

    @pytest.mark.parametrize("tool_calls", [
        ["oops"],
        [{"id": "call_1", "function": "update_dynamic_component"}],
    ])
    def test_malformed_tool_call(self, tool_calls) -> None:
        data = _completion(tool_calls=tool_calls)
        with pytest.raises(ProviderRequestError, match="Unexpected tool call format"):
            parse_assistant_message(ProviderResponse(200, data=data))
