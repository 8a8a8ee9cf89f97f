"""
Main application entry point for the Prompt2Web backend.

Loads config.yaml, validates it (fail fast), then serves the FastAPI gateway
with uvicorn.
"""

# Standard library imports
import argparse
import os
import sys
from pathlib import Path

# Third-party imports
import uvicorn
from dotenv import load_dotenv

# Local imports
from common.config import Config, load_config
from common.logging import get_logger, setup_logging
from gateway.http_gateway import create_gateway_app

# Load environment variables (API keys only) from .env file at module level
load_dotenv()

logger = get_logger(__name__)


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Prompt2Web generation backend")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--port", type=int, help="Override the port to run on")
    parser.add_argument("--host", type=str, help="Override the host to run on")
    return parser.parse_args()


def validate_startup_configuration(config: Config) -> bool:
    """
    Check the model catalog and routing against the configured providers.

    Missing API keys are only warned about: a provider without a key fails
    per request with a 500, the others keep working.
    """
    if not config.providers:
        logger.error(event="config_validation_failed", reason="No providers configured")
        return False

    for entry in config.models:
        if entry.provider not in config.providers:
            logger.error(
                event="config_validation_failed",
                reason="Model refers to unknown provider",
                model=entry.id,
                provider=entry.provider,
            )
            return False

    routing = config.routing
    for model_id in (routing.frontend_model, routing.logic_model, routing.balanced_model):
        if config.find_model(model_id) is None:
            logger.error(
                event="config_validation_failed",
                reason="Routing profile refers to unknown model",
                model=model_id,
            )
            return False

    for name, settings in config.providers.items():
        key_envs = [settings.api_key_env, *settings.fallback_key_envs]
        if not any(os.getenv(env_name) for env_name in key_envs):
            logger.warning(event="provider_key_missing", provider=name, env=settings.api_key_env)

    logger.info(
        event="config_validation_passed",
        providers=sorted(config.providers),
        models=len(config.models),
        persistence=config.persistence.backend,
    )
    return True


def main() -> None:
    """Main entry point."""
    try:
        args = parse_args()
        config = load_config(args.config)
        setup_logging(config)

        if not validate_startup_configuration(config):
            logger.critical(event="startup_failed", reason="Configuration validation failed")
            sys.exit(1)

        app = create_gateway_app(config)

        host = args.host or config.gateway.host
        port = args.port or config.gateway.port
        logger.info(event="starting_server", host=host, port=port)

        uvicorn.run(
            app,
            host=host,
            port=port,
            log_config=None,  # Use our custom logging setup
            access_log=False,
        )

    except KeyboardInterrupt:
        logger.info(event="application_shutdown", reason="Keyboard interrupt")
    except SystemExit as e:
        if e.code == 1:
            logger.critical(event="application_failed", reason="Startup checks failed")
        raise
    except Exception as e:
        logger.critical(event="application_crashed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    main()
