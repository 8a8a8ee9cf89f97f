"""
Configuration loader for the Prompt2Web backend.

Loads settings from config.yaml. Environment variables are used ONLY for secrets
(provider API keys) and are never logged.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field


class GatewayConfig(BaseModel):
    """Configuration for the HTTP gateway."""

    host: str = Field(default="127.0.0.1", description="Host to bind to")
    port: int = Field(default=8000, description="Port to bind to")
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000"], description="Allowed CORS origins"
    )


class GenerationConfig(BaseModel):
    """Configuration for a single generation session."""

    idle_timeout: float = Field(
        default=60.0, description="Seconds without provider bytes before a stream is failed"
    )
    request_timeout: float = Field(
        default=30.0, description="Seconds allowed to connect and receive upstream headers"
    )


class ProviderSettings(BaseModel):
    """Wire settings for one upstream LLM provider."""

    kind: str = Field(default="openai_compatible", description="openai_compatible|gemini")
    display_name: str = Field(default="", description="Human readable provider name")
    base_url: str = Field(description="Endpoint URL (or model collection URL for gemini)")
    api_key_env: str = Field(description="Environment variable holding the API key")
    fallback_key_envs: List[str] = Field(
        default_factory=list, description="Secondary key variables tried in order"
    )
    temperature: float = Field(default=0.7, description="Sampling temperature")
    max_tokens: int = Field(default=4000, description="Maximum output tokens")
    extra_headers: Dict[str, str] = Field(default_factory=dict, description="Static headers")


class ModelEntry(BaseModel):
    """A selectable model in the catalog."""

    id: str = Field(description="Catalog id sent by clients")
    provider: str = Field(description="Key into the providers section")
    upstream_model: str = Field(description="Model name sent to the provider")
    name: str = Field(default="", description="Display name")
    description: str = Field(default="", description="Short description")
    premium: bool = Field(default=False, description="Restricted to paid plans")


class RoutingConfig(BaseModel):
    """Keyword routing used when the requested model is 'auto'."""

    frontend_model: str = Field(default="gemini-flash", description="Frontend-specialist profile")
    logic_model: str = Field(default="deepseek", description="Logic-specialist profile")
    balanced_model: str = Field(default="groq", description="Balanced/general profile")
    frontend_keywords: List[str] = Field(
        default_factory=lambda: ["design", "ui", "css", "animation"]
    )
    logic_keywords: List[str] = Field(
        default_factory=lambda: ["backend", "api", "database", "logic"]
    )


class PersistenceConfig(BaseModel):
    """Configuration for the project record store."""

    backend: str = Field(default="memory", description="memory|yaml")
    path: str = Field(default="projects.yaml", description="File used by the yaml backend")


def _default_providers() -> Dict[str, ProviderSettings]:
    return {
        "groq": ProviderSettings(
            display_name="Groq",
            base_url="https://api.groq.com/openai/v1/chat/completions",
            api_key_env="GROQ_API_KEY",
        ),
        "deepseek": ProviderSettings(
            display_name="DeepSeek",
            base_url="https://api.deepseek.com/chat/completions",
            api_key_env="DEEPSEEK_API_KEY",
        ),
        "openrouter": ProviderSettings(
            display_name="OpenRouter",
            base_url="https://openrouter.ai/api/v1/chat/completions",
            api_key_env="OPENROUTER_API_KEY",
            fallback_key_envs=["CHIMERA_API_KEY"],
            extra_headers={"HTTP-Referer": "https://prompt2web.vercel.app", "X-Title": "Prompt2Web"},
        ),
        "gemini": ProviderSettings(
            kind="gemini",
            display_name="Gemini",
            base_url="https://generativelanguage.googleapis.com/v1beta/models",
            api_key_env="GEMINI_API_KEY",
            max_tokens=8000,
        ),
    }


def _default_models() -> List[ModelEntry]:
    return [
        ModelEntry(id="deepseek", provider="deepseek", upstream_model="deepseek-chat",
                   name="DeepSeek", description="Advanced reasoning"),
        ModelEntry(id="gemini", provider="gemini", upstream_model="gemini-2.0-pro-exp-02-05",
                   name="Gemini Pro", description="Google's strongest model", premium=True),
        ModelEntry(id="gemini-flash", provider="gemini", upstream_model="gemini-2.0-flash",
                   name="Gemini Flash", description="Fast & efficient"),
        ModelEntry(id="groq", provider="groq", upstream_model="llama-3.3-70b-versatile",
                   name="Groq (Llama 3.3)", description="Ultra-fast generation"),
        ModelEntry(id="openai/gpt-oss-120b:free", provider="openrouter",
                   upstream_model="openai/gpt-oss-120b:free", name="GPT-OSS 120B",
                   description="Massive open model", premium=True),
    ]


class Config(BaseModel):
    """Main configuration object."""

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    providers: Dict[str, ProviderSettings] = Field(default_factory=_default_providers)
    models: List[ModelEntry] = Field(default_factory=_default_models)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    log_level: str = Field(default="INFO", description="Logging level")
    enable_pretty_print: bool = Field(
        default=False, description="Enable custom pretty print for debugging"
    )
    enable_jq_json_formatting: bool = Field(
        default=False, description="Enable jq-style JSON formatting for logs"
    )
    save_to_file: bool = Field(default=False, description="Save logs to file")
    log_file_path: str = Field(default="server.log", description="Log file path (relative to root)")
    max_log_file_size: int = Field(
        default=10485760, description="Max log file size in bytes (10MB)"
    )
    backup_count: int = Field(default=5, description="Number of backup log files to keep")

    def find_model(self, model_id: str) -> Optional[ModelEntry]:
        """Return the catalog entry with the given id, if any."""
        for entry in self.models:
            if entry.id == model_id:
                return entry
        return None


_LOGGING_KEYS = {
    "level": "log_level",
    "enable_pretty_print": "enable_pretty_print",
    "enable_jq_json_formatting": "enable_jq_json_formatting",
    "save_to_file": "save_to_file",
    "log_file_path": "log_file_path",
    "max_log_file_size": "max_log_file_size",
    "backup_count": "backup_count",
}


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from YAML file.

    Environment variables are used ONLY for secrets (API keys), not configuration.

    Args:
        config_path: Path to config.yaml file. Defaults to ./config.yaml

    Returns:
        Loaded configuration object
    """
    if config_path is None:
        config_path = Path("config.yaml")

    config_data: Dict[str, Any] = {}

    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

    # Flatten the nested logging section onto the top-level fields
    logging_config = config_data.pop("logging", None) or {}
    for yaml_key, field_name in _LOGGING_KEYS.items():
        if yaml_key in logging_config:
            config_data[field_name] = logging_config[yaml_key]

    return Config(**config_data)
