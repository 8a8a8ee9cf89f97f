"""
Helpers for reading decoded provider event payloads.
"""

from typing import Any, Optional


def dig(payload: Any, *path: Any) -> Any:
    """Follow dict keys / list indexes, returning None at the first missing step."""
    for key in path:
        if isinstance(key, int):
            if not isinstance(payload, list) or len(payload) <= key:
                return None
        elif not isinstance(payload, dict):
            return None
        payload = payload[key] if isinstance(key, int) else payload.get(key)
    return payload


def error_message(payload: Any) -> Optional[str]:
    """Upstream error message carried inside a stream event, if any."""
    if not isinstance(payload, dict) or not payload.get("error"):
        return None
    error = payload["error"]
    if isinstance(error, dict):
        return str(error.get("message") or "Unknown stream error")
    return str(error)
