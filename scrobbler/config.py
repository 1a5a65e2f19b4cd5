"""
Configuration via ENV VARS.

LASTFM_API_KEY / LASTFM_API_SECRET   application credentials (required to send)
LASTFM_SESSION_KEY / LASTFM_USERNAME legacy session seed, migrated on first run
LASTFM_AUTH_TOKEN                    one-time token to exchange at startup
SCROBBLER_DATA_DIR                   where session + queue files live (/data)
SCROBBLER_ENABLED                    1/0 (default 1)
SCROBBLE_PERCENT                     threshold, % of track length (default 50)
SCROBBLER_DEBUG                      1 forces DEBUG logging
LOG_LEVEL                            default INFO
DRAIN_INTERVAL                       seconds between queue drains (default 30)
SCROBBLE_MAX_RETRIES                 drop an entry after N failures (0 = never)
SCROBBLE_MAX_AGE_DAYS                drop entries older than N days (0 = never)
"""

from __future__ import annotations
import os
from dataclasses import dataclass

_TRUE = ("1", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    api_key: str = ""
    api_secret: str = ""
    session_key: str = ""
    username: str = ""
    auth_token: str = ""
    data_dir: str = "/data"
    enabled: bool = True
    scrobble_percent: int = 50
    debug: bool = False
    log_level: str = "INFO"
    drain_interval: int = 30
    max_retries: int = 0
    max_age_days: int = 0

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level

    @property
    def max_age_seconds(self) -> int:
        return self.max_age_days * 86400


def from_env() -> Settings:
    return Settings(
        api_key=os.getenv("LASTFM_API_KEY", "").strip(),
        api_secret=os.getenv("LASTFM_API_SECRET", "").strip(),
        session_key=os.getenv("LASTFM_SESSION_KEY", "").strip(),
        username=os.getenv("LASTFM_USERNAME", "").strip(),
        auth_token=os.getenv("LASTFM_AUTH_TOKEN", "").strip(),
        data_dir=os.getenv("SCROBBLER_DATA_DIR", "/data"),
        enabled=_env_bool("SCROBBLER_ENABLED", True),
        scrobble_percent=min(100, max(1, _env_int("SCROBBLE_PERCENT", 50))),
        debug=_env_bool("SCROBBLER_DEBUG", False),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        drain_interval=max(1, _env_int("DRAIN_INTERVAL", 30)),
        max_retries=max(0, _env_int("SCROBBLE_MAX_RETRIES", 0)),
        max_age_days=max(0, _env_int("SCROBBLE_MAX_AGE_DAYS", 0)),
    )
