"""
Tests for configuration system.
"""

from pathlib import Path

import yaml

from common.config import Config, load_config
from main import validate_startup_configuration


def test_config_creation():
    """Test basic Config creation."""
    config = Config()

    assert config.gateway.port == 8000
    assert config.generation.idle_timeout > 0
    assert config.persistence.backend == "memory"
    assert set(config.providers) == {"groq", "deepseek", "openrouter", "gemini"}


def test_default_routing_points_at_catalog_models():
    config = Config()

    for model_id in (
        config.routing.frontend_model,
        config.routing.logic_model,
        config.routing.balanced_model,
    ):
        assert config.find_model(model_id) is not None
    assert config.find_model("does-not-exist") is None


def test_config_yaml_file_exists():
    """Test that config.yaml file exists."""
    config_path = Path("config.yaml")
    assert config_path.exists(), "config.yaml file should exist in the project root"


def test_shipped_config_loads_and_validates():
    config = load_config(Path("config.yaml"))

    assert config.find_model("glm-4.5-air:free").upstream_model == "z-ai/glm-4.5-air:free"
    assert config.providers["openrouter"].fallback_key_envs == ["CHIMERA_API_KEY"]
    assert config.providers["gemini"].kind == "gemini"
    assert validate_startup_configuration(config)


def test_logging_section_is_flattened(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "logging": {"level": "DEBUG", "save_to_file": True, "backup_count": 2},
                "generation": {"idle_timeout": 5},
            }
        )
    )

    config = load_config(path)

    assert config.log_level == "DEBUG"
    assert config.save_to_file is True
    assert config.backup_count == 2
    assert config.generation.idle_timeout == 5
    assert config.generation.request_timeout == 30


def test_missing_file_gives_defaults(tmp_path: Path):
    config = load_config(tmp_path / "absent.yaml")

    assert config == Config()


def test_validation_rejects_dangling_references():
    config = Config()
    config.routing.balanced_model = "nope"
    assert not validate_startup_configuration(config)

    config = Config()
    config.models[0].provider = "missing"
    assert not validate_startup_configuration(config)


def test_missing_keys_only_warn(monkeypatch):
    for name in ("GROQ_API_KEY", "DEEPSEEK_API_KEY", "OPENROUTER_API_KEY", "CHIMERA_API_KEY", "GEMINI_API_KEY"):
        monkeypatch.delenv(name, raising=False)

    assert validate_startup_configuration(Config())
