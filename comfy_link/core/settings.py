"""Client configuration."""
from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_COMFY_URL = "http://localhost:8188"


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


@dataclass
class ClientSettings:
    url: str = DEFAULT_COMFY_URL
    # Reconnect backoff: delay = min(max_reconnect_delay, base + 2**retries)
    base_reconnect_delay: float = 5.0
    max_reconnect_delay: float = 60.0
    max_retry_count: int = 60
    request_timeout: float = 30.0
    download_timeout: float = 120.0
    track_submissions: bool = True
    # 0 means unbounded
    client_queue_size: int = 0

    @staticmethod
    def from_env(**overrides) -> "ClientSettings":
        """Build settings from COMFY_* environment variables."""
        settings = ClientSettings(
            url=os.getenv("COMFY_URL", DEFAULT_COMFY_URL),
            max_reconnect_delay=_env_float("COMFY_MAX_RECONNECT_DELAY", 60.0),
            request_timeout=_env_float("COMFY_REQUEST_TIMEOUT", 30.0),
        )
        for key, value in overrides.items():
            if not hasattr(settings, key):
                raise TypeError(f"Unknown setting: {key}")
            setattr(settings, key, value)
        return settings

    @property
    def base_url(self) -> str:
        url = self.url.rstrip("/")
        if "://" not in url:
            url = f"http://{url}"
        return url

    def websocket_url(self, client_id: str) -> str:
        """Websocket endpoint for the given client id."""
        scheme, rest = self.base_url.split("://", 1)
        ws_scheme = "wss" if scheme in ("https", "wss") else "ws"
        return f"{ws_scheme}://{rest}/ws?clientId={client_id}"
