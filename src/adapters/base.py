"""
Base adapter interface for upstream LLM providers.

Each adapter knows two things about its provider: how to build the streaming
request, and where the content delta lives in the provider's native event
shape. Opening the HTTP stream and checking its status is shared.

- Async I/O for all operations
- Never log secrets or API keys
- Upstream status is checked before any bytes are streamed onward
"""

import json
import os
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import httpx

from common.config import ProviderSettings
from common.errors import (
    MissingCredentialError,
    ProviderHTTPError,
    ProviderStreamError,
)
from common.logging import get_logger
from common.models import GenerationRequest
from common.payload import error_message

logger = get_logger(__name__)

UpstreamRequest = Tuple[str, Dict[str, str], Dict[str, Any]]


def upstream_error_details(raw: str) -> str:
    """`error.message` from an upstream JSON error body, else the raw body."""
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return raw
    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return raw


class ProviderStream:
    """An upstream response whose status was accepted and whose body is unread."""

    def __init__(self, provider: str, client: httpx.AsyncClient, response: httpx.Response):
        self.provider = provider
        self._client = client
        self._response = response

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for data in self._response.aiter_bytes():
                yield data
        except httpx.HTTPError as e:
            logger.error(event="provider_stream_broken", provider=self.provider, error=str(e))
            raise ProviderStreamError(f"{self.provider} stream interrupted", str(e)) from e

    async def aclose(self) -> None:
        await self._response.aclose()
        await self._client.aclose()


class BaseProviderAdapter(ABC):
    """Base class for provider adapters."""

    def __init__(
        self,
        name: str,
        settings: ProviderSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        request_timeout: float = 30.0,
    ):
        self.name = name
        self.settings = settings
        self.transport = transport
        self.request_timeout = request_timeout

    @property
    def display_name(self) -> str:
        return self.settings.display_name or self.name

    def api_key(self) -> str:
        """Read the API key from the environment; never logged."""
        for env_name in [self.settings.api_key_env, *self.settings.fallback_key_envs]:
            value = (os.getenv(env_name) or "").strip()
            if value:
                return value
        raise MissingCredentialError(f"{self.display_name} API key is not configured")

    @abstractmethod
    def build_request(
        self, request: GenerationRequest, upstream_model: str, system_prompt: str
    ) -> UpstreamRequest:
        """Return (url, headers, json body) for a streaming completion."""

    @abstractmethod
    def extract_delta(self, payload: Any) -> Optional[str]:
        """Content text carried by one decoded event, if any."""

    def extract_error(self, payload: Any) -> Optional[str]:
        """Error message carried by one decoded event, if any."""
        return error_message(payload)

    async def open_stream(
        self, request: GenerationRequest, upstream_model: str, system_prompt: str
    ) -> ProviderStream:
        """
        Send the request and wait for the upstream status line.

        Raises:
            MissingCredentialError: API key not configured
            ProviderHTTPError: upstream answered with a non-2xx status
            ProviderStreamError: the request could not be sent
        """
        url, headers, body = self.build_request(request, upstream_model, system_prompt)
        client = httpx.AsyncClient(
            transport=self.transport,
            timeout=httpx.Timeout(self.request_timeout, read=None),
        )
        try:
            response = await client.send(
                client.build_request("POST", url, headers=headers, json=body), stream=True
            )
        except httpx.HTTPError as e:
            await client.aclose()
            logger.error(event="provider_request_failed", provider=self.name, error=str(e))
            raise ProviderStreamError(f"{self.display_name} request failed", str(e)) from e

        if not response.is_success:
            raw = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            await client.aclose()
            logger.warning(
                event="provider_http_error",
                provider=self.name,
                status_code=response.status_code,
                body_length=len(raw),
            )
            raise ProviderHTTPError(
                self.display_name, response.status_code, upstream_error_details(raw)
            )

        logger.info(
            event="provider_stream_opened",
            provider=self.name,
            model=upstream_model,
            mode=request.mode.value,
            prompt_length=len(request.prompt),
        )
        return ProviderStream(self.name, client, response)
