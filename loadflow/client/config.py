"""
Client-side settings, overridable with ``LOADFLOW_*`` environment variables.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    API_URL: str = "http://localhost:8000/api/v1"
    REQUEST_TIMEOUT: float = 10.0
    # Must comfortably exceed the server's keepalive interval.
    STREAM_READ_TIMEOUT: float = 60.0
    # 0 means retry forever.
    RECONNECT_MAX_ATTEMPTS: int = 0
    RECONNECT_INITIAL_DELAY: float = 0.5
    RECONNECT_MAX_DELAY: float = 30.0
    ENFORCE_STATUS_TRANSITIONS: bool = True
    # How long completed loads stay on the board.
    COMPLETED_VISIBILITY_HOURS: float = 48

    model_config = {
        "env_prefix": "LOADFLOW_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }


client_settings = ClientSettings()
