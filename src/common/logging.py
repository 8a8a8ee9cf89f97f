"""
Structured JSON logging setup using structlog.

- Include event, module, and elapsed_ms fields
- Never log API keys, prompt bodies, or generated file contents (lengths only)
"""

import json
import logging
import logging.handlers
import subprocess
import time
from typing import Any, Optional

import structlog

from common.config import Config

# Global config reference for the renderer settings
_config: Optional[Config] = None


def jq_format_json(json_str: str) -> str:
    """
    Format JSON string using jq-style pretty printing.
    Falls back to regular JSON pretty printing if jq is not available.
    """
    try:
        result = subprocess.run(
            ["jq", "."], input=json_str, text=True, capture_output=True, timeout=1
        )
        if result.returncode == 0:
            return result.stdout.rstrip()
    except (subprocess.TimeoutExpired, FileNotFoundError, subprocess.SubprocessError):
        pass

    try:
        return json.dumps(json.loads(json_str), indent=2)
    except json.JSONDecodeError:
        return json_str


def pretty_renderer(_, __, event_dict) -> str:
    """
    Render a log entry according to configuration:
    - enable_jq_json_formatting: jq-style indented JSON
    - enable_pretty_print: one "key: value" line per field, no timestamp/level
    - Neither: compact JSON
    """
    json_str = str(structlog.processors.JSONRenderer()(_, __, event_dict))

    if _config and _config.enable_jq_json_formatting:
        return jq_format_json(json_str)

    if _config and _config.enable_pretty_print:
        fields = {
            k: v for k, v in event_dict.items() if k not in ("timestamp", "level", "logger")
        }
        lines = [f"EVENT: {fields.pop('event', 'unknown_event')}"]
        for key, value in fields.items():
            if isinstance(value, (dict, list)):
                value = str(value).replace(", ", ",\n    ")
            lines.append(f"{key}: {value}")
        lines.append("-" * 50)
        return "\n".join(lines)

    return json_str


def setup_logging(config: Config) -> None:
    """
    Setup structured JSON logging using structlog.

    Args:
        config: Application configuration
    """
    global _config
    _config = config

    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            pretty_renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    handlers.append(console_handler)

    if config.save_to_file:
        file_handler = logging.handlers.RotatingFileHandler(
            filename=config.log_file_path,
            maxBytes=config.max_log_file_size,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, format="%(message)s", force=True)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)


class TimedLogger:
    """Context manager for timing operations and logging elapsed time using structlog."""

    def __init__(self, logger: structlog.BoundLogger, event: str, **context: Any):
        """
        Initialize timed logger.

        Args:
            logger: structlog logger instance
            event: Event name for the log entry
            **context: Additional context to include in logs
        """
        self.logger = logger
        self.event = event
        self.context = context
        self.start_time: Optional[float] = None

    def __enter__(self) -> "TimedLogger":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.start_time is None:
            return
        elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        self.logger.info(
            self.event,
            elapsed_ms=round(elapsed_ms, 2),
            failed=exc_type is not None,
            **self.context,
        )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a configured structlog logger."""
    return structlog.get_logger(name)
