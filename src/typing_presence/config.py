from __future__ import annotations

import os
import urllib.parse
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_API_URL = "http://localhost:8080"
ENV_PREFIX = "MESSAGING_"


class ConfigError(ValueError):
    pass


def ws_base_for(api_url: str) -> str:
    parsed = urllib.parse.urlsplit(api_url)
    scheme = {"http": "ws", "https": "wss"}.get(parsed.scheme, parsed.scheme)
    return urllib.parse.urlunsplit((scheme, parsed.netloc, parsed.path, "", "")).rstrip("/")


@dataclass
class ClientConfig:
    api_url: str = DEFAULT_API_URL
    ws_url: str = "ws://localhost:8080"
    typing_ttl_ms: int = 4000
    typing_throttle_ms: int = 2000
    typing_stop_after_ms: int = 3000
    heartbeat_s: float = 30.0
    history_page_size: int = 100
    outbound_queue_size: int = 256

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ClientConfig":
        env = os.environ if environ is None else environ
        api_url = env.get(f"{ENV_PREFIX}API_URL") or DEFAULT_API_URL
        ws_url = env.get(f"{ENV_PREFIX}WS_URL") or ws_base_for(api_url)
        defaults = cls()
        return cls(
            api_url=api_url.rstrip("/"),
            ws_url=ws_url.rstrip("/"),
            typing_ttl_ms=_positive_int(env, "TYPING_TTL_MS", defaults.typing_ttl_ms),
            typing_throttle_ms=_positive_int(env, "TYPING_THROTTLE_MS", defaults.typing_throttle_ms),
            typing_stop_after_ms=_positive_int(env, "TYPING_STOP_AFTER_MS", defaults.typing_stop_after_ms),
            heartbeat_s=_positive_float(env, "HEARTBEAT_S", defaults.heartbeat_s),
        )


def _positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(f"{ENV_PREFIX}{name}")
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{ENV_PREFIX}{name} must be positive")
    return value


def _positive_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(f"{ENV_PREFIX}{name}")
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{ENV_PREFIX}{name} must be positive")
    return value
