"""
Model catalog lookup, keyword routing and adapter construction.

When the client asks for model "auto", the prompt is classified by keyword
family and routed to the configured frontend, logic or balanced profile.
"""

import re
from typing import Dict, Iterable, List, Optional, Type

import httpx

from adapters.base import BaseProviderAdapter
from adapters.gemini_adapter import GeminiAdapter
from adapters.openai_adapter import OpenAICompatibleAdapter
from common.config import Config, ModelEntry, RoutingConfig
from common.errors import UnknownModelError
from common.logging import get_logger
from common.models import GenerationRequest

logger = get_logger(__name__)

AUTO_MODEL = "auto"

ADAPTER_KINDS: Dict[str, Type[BaseProviderAdapter]] = {
    "openai_compatible": OpenAICompatibleAdapter,
    "gemini": GeminiAdapter,
}


def _mentions(prompt: str, keywords: Iterable[str]) -> bool:
    words = [re.escape(k) for k in keywords if k]
    if not words:
        return False
    return re.search(r"\b(?:" + "|".join(words) + r")\b", prompt, re.IGNORECASE) is not None


def classify_prompt(prompt: str, routing: RoutingConfig) -> str:
    """Return 'frontend', 'logic' or 'balanced'. Frontend keywords win ties."""
    if _mentions(prompt, routing.frontend_keywords):
        return "frontend"
    if _mentions(prompt, routing.logic_keywords):
        return "logic"
    return "balanced"


class ProviderRegistry:
    """Resolves requests to catalog entries and provider adapters."""

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.transport = transport
        self._adapters: Dict[str, BaseProviderAdapter] = {}

    def catalog(self) -> List[ModelEntry]:
        return list(self.config.models)

    def resolve_model(self, request: GenerationRequest) -> ModelEntry:
        model_id = request.model
        if model_id == AUTO_MODEL:
            routing = self.config.routing
            profile = classify_prompt(request.prompt, routing)
            model_id = {
                "frontend": routing.frontend_model,
                "logic": routing.logic_model,
                "balanced": routing.balanced_model,
            }[profile]
            logger.info(event="model_auto_routed", profile=profile, model=model_id)

        entry = self.config.find_model(model_id)
        if entry is None:
            raise UnknownModelError(f"Unknown model '{model_id}'")
        return entry

    def adapter_for(self, entry: ModelEntry) -> BaseProviderAdapter:
        if entry.provider in self._adapters:
            return self._adapters[entry.provider]

        settings = self.config.providers.get(entry.provider)
        if settings is None:
            raise UnknownModelError(
                f"Model '{entry.id}' refers to unconfigured provider '{entry.provider}'"
            )
        adapter_cls = ADAPTER_KINDS.get(settings.kind)
        if adapter_cls is None:
            raise UnknownModelError(f"Unsupported provider kind '{settings.kind}'")

        adapter = adapter_cls(
            entry.provider,
            settings,
            transport=self.transport,
            request_timeout=self.config.generation.request_timeout,
        )
        self._adapters[entry.provider] = adapter
        return adapter
