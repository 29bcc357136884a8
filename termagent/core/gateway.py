"""
LLM gateways used by the orchestrator's planning calls.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
import ollama
from ollama import AsyncClient

from termagent.config import GatewayConfig
from termagent.exceptions import (
    ConfigError,
    EmptyResponseError,
    GatewayConnectionError,
    GatewayError,
    GatewayModelError,
)

logger = logging.getLogger(__name__)


class ChatGateway(Protocol):
    """Request/response access to a chat model."""

    async def complete(self, messages: list[dict[str, Any]]) -> str:
        """Send the dialogue and return the reply text."""
        ...


class OllamaGateway:
    """Async gateway for a local Ollama server."""

    def __init__(self, config: GatewayConfig) -> None:
        """Initialize Ollama gateway.

        Args:
            config: Gateway configuration.
        """
        self.config = config
        self.client = AsyncClient(host=config.host, timeout=config.timeout)

    async def is_available(self) -> bool:
        """Check if Ollama server is available.

        Returns:
            True if server is reachable.
        """
        try:
            await self.client.list()
            return True
        except Exception:
            return False

    async def complete(self, messages: list[dict[str, Any]]) -> str:
        """Send chat messages and get the full reply.

        Args:
            messages: Dialogue entries, system prompt first.

        Returns:
            Reply text.

        Raises:
            GatewayModelError: If model doesn't exist.
            GatewayError: If chat fails.
        """
        model = self.config.model
        try:
            response = await self.client.chat(
                model=model,
                messages=messages,
                options={
                    "temperature": self.config.temperature,
                    "num_predict": self.config.max_tokens,
                },
            )
        except ollama.ResponseError as e:
            if "not found" in str(e).lower():
                raise GatewayModelError(f"Model not found: {model}") from e
            raise GatewayError(f"Chat failed: {e}") from e
        except (ConnectionError, httpx.HTTPError) as e:
            raise GatewayConnectionError(
                f"Cannot connect to Ollama at {self.config.host}: {e}"
            ) from e
        except Exception as e:
            raise GatewayError(f"Chat failed: {e}") from e

        if hasattr(response, "message"):
            content = response.message.content
        else:
            content = response["message"]["content"]
        if not content or not content.strip():
            raise EmptyResponseError("Empty response from model")
        return content


class OpenAIGateway:
    """Gateway for OpenAI-compatible ``/chat/completions`` endpoints."""

    def __init__(
        self,
        config: GatewayConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{self.config.base_url}/chat/completions"

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return httpx.AsyncClient(
            timeout=self.config.timeout,
            headers=headers,
            transport=self._transport,
            proxy=self.config.proxy_url if self._transport is None else None,
        )

    async def complete(self, messages: list[dict[str, Any]]) -> str:
        payload = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        try:
            async with self._client() as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise GatewayConnectionError(f"Request to {self.url} timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise GatewayError(
                f"Chat failed ({e.response.status_code}): {_api_error_message(e.response)}"
            ) from e
        except httpx.RequestError as e:
            raise GatewayConnectionError(f"Request to {self.url} failed: {e}") from e
        except ValueError as e:
            raise GatewayError(f"Invalid JSON from {self.url}: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise GatewayError(f"Unexpected response shape from {self.url}") from e
        if not content or not str(content).strip():
            raise EmptyResponseError("Empty response from model")
        return str(content)


def _api_error_message(response: httpx.Response) -> str:
    """Pull the error message out of an API error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            return str(body["message"])
    return response.reason_phrase


def create_gateway(config: GatewayConfig) -> OllamaGateway | OpenAIGateway:
    """Build the gateway selected by configuration.

    Raises:
        ConfigError: If the provider needs settings that are missing.
    """
    if config.provider == "openai":
        if not config.model:
            raise ConfigError("gateway.model must be set for the openai provider")
        logger.debug("Using OpenAI-compatible gateway at %s", config.base_url)
        return OpenAIGateway(config)
    logger.debug("Using Ollama gateway at %s", config.host)
    return OllamaGateway(config)
