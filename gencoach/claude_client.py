"""Async client for the Anthropic Messages API.

Wraps ``POST /v1/messages`` with timeout handling and structured responses.
Like the rest of the package's network code, the client never raises on a
transport or provider failure: it returns a ``ClaudeResponse`` with
``success=False`` and a human-readable ``error``, and the caller decides what
a failure means.

Typical usage::

    client = ClaudeClient(ClaudeConfig(api_key="sk-ant-..."))
    resp = await client.send_request(ClaudeRequest(prompt="Hello"))
    if resp.success:
        print(resp.content)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel, Field

from gencoach.config import ClaudeConfig
from gencoach.utils import utc_now


class ClaudeRequest(BaseModel):
    """A single-turn generation request."""

    prompt: str
    system: str = ""
    max_tokens: int = Field(default=4096, ge=1)
    temperature: float = Field(default=1.0, ge=0.0, le=1.0)
    model: str | None = Field(default=None, description="Overrides the configured model")


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class ClaudeResponse(BaseModel):
    """Structured response from a Messages API call."""

    content: str = Field(default="", description="Concatenated text content blocks")
    model: str = Field(default="", description="Model that produced the response")
    stop_reason: str | None = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    success: bool = Field(default=True, description="Whether the request succeeded")
    error: str | None = Field(default=None, description="Error message on failure")


class ConnectionStatus(BaseModel):
    connected: bool = False
    last_checked: datetime | None = None
    error: str | None = None


class ClaudeClient:
    """Async client for the Anthropic Messages API.

    The API key may be supplied up front through ``ClaudeConfig`` or later
    with ``set_api_key`` (stage 4 collects it from the user).
    """

    def __init__(self, config: ClaudeConfig | None = None) -> None:
        self.config = config or ClaudeConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self.timeout = self.config.timeout
        self.api_key: str | None = self.config.api_key or None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        """Return a fresh ``AsyncClient`` carrying the authentication headers."""
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            headers={
                "x-api-key": self.api_key or "",
                "anthropic-version": self.config.anthropic_version,
                "Content-Type": "application/json",
            },
        )

    @staticmethod
    def _extract_text(data: dict) -> str:
        """Join the ``text`` blocks of a Messages API ``content`` array."""
        blocks = data.get("content") or []
        return "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type", "text") == "text"
        )

    @staticmethod
    def _extract_error_message(response: httpx.Response) -> str:
        """Prefer the provider's ``{"error": {"message": ...}}`` envelope."""
        try:
            data = response.json()
        except ValueError:
            return response.text[:500]
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
        return response.text[:500]

    def _payload(self, request: ClaudeRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model or self.config.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system:
            payload["system"] = request.system
        return payload

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def set_api_key(self, api_key: str) -> None:
        self.api_key = api_key or None

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def send_request(self, request: ClaudeRequest) -> ClaudeResponse:
        """Send one request to ``/messages``.

        Returns:
            A ``ClaudeResponse`` with the generated text or an error.
        """
        model = request.model or self.config.model
        if not self.is_configured():
            return ClaudeResponse(
                model=model,
                success=False,
                error="Claude API key not configured.",
            )

        try:
            async with self._client() as client:
                response = await client.post("/messages", json=self._payload(request))
                response.raise_for_status()
                data = response.json()
                usage = data.get("usage") or {}
                return ClaudeResponse(
                    content=self._extract_text(data),
                    model=data.get("model", model),
                    stop_reason=data.get("stop_reason"),
                    usage=TokenUsage(
                        input_tokens=usage.get("input_tokens", 0),
                        output_tokens=usage.get("output_tokens", 0),
                    ),
                    success=True,
                )
        except httpx.ConnectError:
            return ClaudeResponse(
                model=model,
                success=False,
                error=f"Cannot connect to the Claude API at {self.base_url}.",
            )
        except httpx.TimeoutException:
            return ClaudeResponse(
                model=model,
                success=False,
                error=f"Request to the Claude API timed out after {self.timeout}s.",
            )
        except httpx.HTTPStatusError as exc:
            return ClaudeResponse(
                model=model,
                success=False,
                error=(
                    f"Claude API returned HTTP {exc.response.status_code}: "
                    f"{self._extract_error_message(exc.response)}"
                ),
            )
        except Exception as exc:  # noqa: BLE001
            return ClaudeResponse(
                model=model,
                success=False,
                error=f"Unexpected error during Claude request: {exc}",
            )

    async def test_connection(self) -> ConnectionStatus:
        """Issue a tiny request to check the key and the endpoint."""
        if not self.is_configured():
            return ConnectionStatus(
                connected=False,
                last_checked=utc_now(),
                error="API key not configured",
            )
        result = await self.send_request(ClaudeRequest(prompt="Hello", max_tokens=10))
        return ConnectionStatus(
            connected=result.success,
            last_checked=utc_now(),
            error=result.error,
        )
