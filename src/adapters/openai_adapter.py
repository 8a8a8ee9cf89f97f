"""
Adapter for OpenAI-compatible chat completion endpoints.

Groq, DeepSeek and OpenRouter all speak this protocol; they differ only in
URL, key variable, and static headers, which come from configuration.
"""

from typing import Any, Optional

from adapters.base import BaseProviderAdapter, UpstreamRequest
from common.models import GenerationRequest
from common.payload import dig


class OpenAICompatibleAdapter(BaseProviderAdapter):
    """Streams `choices[0].delta.content` deltas."""

    def build_request(
        self, request: GenerationRequest, upstream_model: str, system_prompt: str
    ) -> UpstreamRequest:
        key = self.api_key()
        headers = {
            "Content-Type": "application/json",
            "Authorization": key if key.startswith("Bearer ") else f"Bearer {key}",
            **self.settings.extra_headers,
        }
        body = {
            "model": upstream_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": request.prompt},
            ],
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
            "stream": True,
        }
        return self.settings.base_url, headers, body

    def extract_delta(self, payload: Any) -> Optional[str]:
        content = dig(payload, "choices", 0, "delta", "content")
        return content if isinstance(content, str) and content else None
