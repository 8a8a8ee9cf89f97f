"""
Google Gemini adapter.

Uses `streamGenerateContent` with `alt=sse` so the response arrives in the
same `data: {...}` line shape as the other providers. Gemini has no system
role on this endpoint; the system prompt is folded into the user turn.
"""

from typing import Any, Optional

from adapters.base import BaseProviderAdapter, UpstreamRequest
from common.models import GenerationRequest
from common.payload import dig


class GeminiAdapter(BaseProviderAdapter):
    """Streams `candidates[0].content.parts[*].text` deltas."""

    def build_request(
        self, request: GenerationRequest, upstream_model: str, system_prompt: str
    ) -> UpstreamRequest:
        url = f"{self.settings.base_url.rstrip('/')}/{upstream_model}:streamGenerateContent?alt=sse"
        # Key goes in a header so it never appears in a logged URL
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key()}
        body = {
            "contents": [
                {
                    "role": "user",
                    "parts": [{"text": f"{system_prompt}\n\nUser Request: {request.prompt}"}],
                }
            ],
            "generationConfig": {
                "temperature": self.settings.temperature,
                "maxOutputTokens": self.settings.max_tokens,
            },
        }
        return url, headers, body

    def extract_delta(self, payload: Any) -> Optional[str]:
        parts = dig(payload, "candidates", 0, "content", "parts")
        if not isinstance(parts, list):
            return None
        text = "".join(
            part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
        return text or None
