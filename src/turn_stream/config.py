"""Client configuration from the environment."""

import os

from pydantic import BaseModel

DEFAULT_BASE_URL = "http://localhost:3001/api"
DEFAULT_TIMEOUT = 300.0


class ClientConfig(BaseModel):
    """Where and how to reach the chat backend."""

    base_url: str = DEFAULT_BASE_URL
    user_id: str | None = None
    timeout: float = DEFAULT_TIMEOUT


def load_config() -> ClientConfig:
    """Read TURN_STREAM_* environment variables, falling back to defaults."""
    timeout = os.getenv("TURN_STREAM_TIMEOUT")
    try:
        timeout_value = float(timeout) if timeout else DEFAULT_TIMEOUT
    except ValueError as e:
        raise RuntimeError(f"TURN_STREAM_TIMEOUT must be a number of seconds, got {timeout!r}") from e

    return ClientConfig(
        base_url=(os.getenv("TURN_STREAM_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
        user_id=os.getenv("TURN_STREAM_USER_ID") or None,
        timeout=timeout_value,
    )
