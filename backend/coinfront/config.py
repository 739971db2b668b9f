"""Runtime settings read from environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True, slots=True)
class Settings:
    """Process-wide configuration. Blank variables fall back to the defaults."""

    coingecko_api_key: str | None = None
    data_source: str = "coingecko"  # "coingecko" or "simulator"
    simulator_failure_rate: float = 0.0
    cache_ttl: float = 120.0  # Fresh tier lifetime for snapshot/history
    max_requests: int = 20  # per resource per window; below CoinGecko's own limit
    global_max_requests: int = 30  # across all resources per window
    max_resources: int = 256  # fetchers kept before the least recently used is dropped
    rate_window: float = 60.0
    stream_interval: float = 10.0  # streaming fetch period and min fetch interval
    heartbeat_interval: float = 30.0
    upstream_timeout: float = 10.0
    stream_queue_size: int = 100
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if env is None else env
        return cls(
            coingecko_api_key=env.get("COINGECKO_API_KEY", "").strip() or None,
            data_source=env.get("COINFRONT_DATA_SOURCE", "").strip().lower() or "coingecko",
            simulator_failure_rate=_float(env, "COINFRONT_SIMULATOR_FAILURE_RATE", 0.0),
            cache_ttl=_float(env, "COINFRONT_CACHE_TTL", 120.0),
            max_requests=_int(env, "COINFRONT_MAX_REQUESTS", 20),
            global_max_requests=_int(env, "COINFRONT_GLOBAL_MAX_REQUESTS", 30),
            max_resources=_int(env, "COINFRONT_MAX_RESOURCES", 256),
            rate_window=_float(env, "COINFRONT_RATE_WINDOW", 60.0),
            stream_interval=_float(env, "COINFRONT_STREAM_INTERVAL", 10.0),
            heartbeat_interval=_float(env, "COINFRONT_HEARTBEAT_INTERVAL", 30.0),
            upstream_timeout=_float(env, "COINFRONT_UPSTREAM_TIMEOUT", 10.0),
            stream_queue_size=_int(env, "COINFRONT_STREAM_QUEUE_SIZE", 100),
            log_level=env.get("LOG_LEVEL", "").strip().upper() or "INFO",
            host=env.get("COINFRONT_HOST", "").strip() or "127.0.0.1",
            port=_int(env, "COINFRONT_PORT", 8000),
        )
