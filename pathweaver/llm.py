"""LLM client: HTTP connection to an OpenAI-compatible chat-completions API.

The orchestrator talks to the provider through an object matching:

    async def chat(model, messages, tools=None, tool_choice=None) -> ProviderResponse
    async def list_models() -> list[dict]

`chat` returns the response whatever its status, so the rate-limit monitor
can read quota headers from failures as well as successes. Connection
problems and timeouts are raised as TransportError; a missing API key is
raised as AuthError before any I/O.

Wire format:
    POST {base}/chat/completions  {"model", "messages", "tools"?, "tool_choice"?,
                                   "temperature", "top_p", "max_tokens"}
        Response: {"choices": [{"message": {"content", "tool_calls"?}}]}
        Error:    {"error": {"message": "..."}}
    GET  {base}/models
        Response: {"data": [{"id", "max_completion_tokens", ...}]}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from pathweaver.config import Settings
from pathweaver.errors import (
    AuthError,
    ProviderRequestError,
    ProviderServerError,
    TransportError,
)
from pathweaver.models import AssistantMessage, ToolCallRequest

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Response wrapper
# ---------------------------------------------------------------------------

@dataclass
class ProviderResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    data: Any = None
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def error_message(self) -> str:
        """The provider's `error.message`, falling back to the raw body."""
        if isinstance(self.data, dict):
            error = self.data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str):
                return error
        return self.text

    @property
    def error_code(self) -> str:
        if isinstance(self.data, dict):
            error = self.data.get("error")
            if isinstance(error, dict):
                return str(error.get("code") or error.get("type") or "")
        return ""

    @classmethod
    def from_httpx(cls, resp: httpx.Response) -> ProviderResponse:
        try:
            data = resp.json()
        except ValueError:
            data = None
        return cls(
            status_code=resp.status_code,
            headers={k.lower(): v for k, v in resp.headers.items()},
            data=data,
            text=resp.text,
        )


class ChatProvider(Protocol):
    async def chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | None = None,
    ) -> ProviderResponse: ...

    async def list_models(self) -> list[dict[str, Any]]: ...


# ---------------------------------------------------------------------------
# ProviderClient connects to a real backend
# ---------------------------------------------------------------------------

class ProviderClient:
    """Async HTTP client for OpenAI-compatible providers (Groq by default).

    Args:
        base_url:    API root, e.g. "https://api.groq.com/openai/v1".
        api_key:     Bearer token. Calls fail with AuthError when empty.
        timeout:     HTTP timeout in seconds. Defaults to 60.
        temperature, top_p, max_tokens: sampling parameters sent on every chat call.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 60.0,
        temperature: float = 0.8,
        top_p: float = 0.9,
        max_tokens: int = 2048,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._sampling = {"temperature": temperature, "top_p": top_p, "max_tokens": max_tokens}

    @classmethod
    def from_settings(cls, settings: Settings) -> ProviderClient:
        return cls(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            timeout=settings.provider_timeout,
            temperature=settings.temperature,
            top_p=settings.top_p,
            max_tokens=settings.max_tokens,
        )

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise AuthError("API key not configured (set LLM_API_KEY)")
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    def _build_body(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        tool_choice: str | None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"model": model, "messages": messages, **self._sampling}
        if tools:
            body["tools"] = tools
            body["tool_choice"] = tool_choice or "auto"
        return body

    async def chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | None = None,
    ) -> ProviderResponse:
        url = f"{self._base_url}/chat/completions"
        headers = self._headers()
        body = self._build_body(model, messages, tools, tool_choice)
        logger.debug(
            "chat model=%s messages=%d tools=%d tool_choice=%s",
            model, len(messages), len(tools or []), body.get("tool_choice"),
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=headers)
        except httpx.ConnectError as e:
            raise TransportError(f"Cannot connect to LLM provider at {self._base_url}") from e
        except httpx.TimeoutException as e:
            raise TransportError(f"LLM provider timed out after {self._timeout:g}s") from e
        except httpx.TransportError as e:
            raise TransportError(f"LLM provider connection failed: {e}") from e

        logger.debug("chat response model=%s status=%d len=%d", model, resp.status_code, len(resp.text))
        return ProviderResponse.from_httpx(resp)

    async def list_models(self) -> list[dict[str, Any]]:
        url = f"{self._base_url}/models"
        headers = self._headers()
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url, headers=headers)
        except httpx.ConnectError as e:
            raise TransportError(f"Cannot connect to LLM provider at {self._base_url}") from e
        except httpx.TimeoutException as e:
            raise TransportError(f"LLM provider timed out after {self._timeout:g}s") from e
        except httpx.TransportError as e:
            raise TransportError(f"LLM provider connection failed: {e}") from e

        response = ProviderResponse.from_httpx(resp)
        raise_for_provider_status(response)
        if not isinstance(response.data, dict) or not isinstance(response.data.get("data"), list):
            raise ProviderRequestError("Unexpected response format from models endpoint")
        return response.data["data"]


# ---------------------------------------------------------------------------
# Response interpretation
# ---------------------------------------------------------------------------

def raise_for_provider_status(response: ProviderResponse) -> None:
    """Raise the categorized error for a failed response.

    429 is not handled here; the rate-limit monitor owns it.
    """
    if response.ok or response.status_code == 429:
        return
    status = response.status_code
    detail = response.error_message
    if status in (401, 403):
        raise AuthError(f"LLM provider rejected credentials (HTTP {status}): {detail}")
    if status >= 500:
        raise ProviderServerError(f"LLM provider returned HTTP {status}: {detail}", status)
    raise ProviderRequestError(f"LLM provider returned HTTP {status}: {detail}", status)


def parse_assistant_message(response: ProviderResponse) -> AssistantMessage:
    """Extract content and tool calls from `choices[0].message`."""
    data = response.data
    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise ProviderRequestError("Unexpected response format from LLM provider")

    message = choices[0].get("message")
    if not isinstance(message, dict) or not isinstance(message.get("tool_calls") or [], list):
        raise ProviderRequestError("Unexpected response format from LLM provider")

    calls: list[ToolCallRequest] = []
    for raw in message.get("tool_calls") or []:
        if not isinstance(raw, dict) or not isinstance(raw.get("function") or {}, dict):
            raise ProviderRequestError("Unexpected tool call format from LLM provider")
        function = raw.get("function") or {}
        arguments = function.get("arguments") or ""
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        calls.append(ToolCallRequest(
            id=str(raw.get("id") or ""),
            name=str(function.get("name") or ""),
            arguments=arguments,
        ))
    return AssistantMessage(content=message.get("content") or "", tool_calls=calls)
