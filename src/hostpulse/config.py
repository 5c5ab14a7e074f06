"""Runtime settings for hostpulse."""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from hostpulse.errors import ConfigError
from hostpulse.tunnel import DEFAULT_TUNNEL_HOST

DEFAULT_PORT = 3000
MIN_INTERVAL = 0.1
STATIC_DIR = Path(__file__).parent / "public"

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(slots=True, frozen=True)
class Settings:
    """Server settings. There is no configuration file; see from_env()."""

    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    static_dir: Path = STATIC_DIR
    interval: float = 1.0
    tunnel: bool = True
    tunnel_host: str = DEFAULT_TUNNEL_HOST
    subdomain: str | None = None
    shared_sampling: bool = False
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"port out of range: {self.port}")
        if self.interval < MIN_INTERVAL:
            raise ConfigError(f"interval must be at least {MIN_INTERVAL}s, got {self.interval}")
        if logging.getLevelName(self.log_level.upper()) not in range(0, 51):
            raise ConfigError(f"unknown log level: {self.log_level}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> "Settings":
        """
        Build settings from HOSTPULSE_* environment variables.

        `PORT` is honoured as a fallback for HOSTPULSE_PORT. Keyword overrides
        that are not None win over the environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        port = env.get("HOSTPULSE_PORT", env.get("PORT"))
        if port is not None:
            values["port"] = _parse(int, "port", port)
        if "HOSTPULSE_HOST" in env:
            values["host"] = env["HOSTPULSE_HOST"]
        if "HOSTPULSE_STATIC_DIR" in env:
            values["static_dir"] = Path(env["HOSTPULSE_STATIC_DIR"])
        if "HOSTPULSE_INTERVAL" in env:
            values["interval"] = _parse(float, "interval", env["HOSTPULSE_INTERVAL"])
        if "HOSTPULSE_TUNNEL" in env:
            values["tunnel"] = _parse_bool("HOSTPULSE_TUNNEL", env["HOSTPULSE_TUNNEL"])
        if "HOSTPULSE_TUNNEL_HOST" in env:
            values["tunnel_host"] = env["HOSTPULSE_TUNNEL_HOST"]
        if env.get("HOSTPULSE_SUBDOMAIN"):
            values["subdomain"] = env["HOSTPULSE_SUBDOMAIN"]
        if "HOSTPULSE_SHARED_SAMPLING" in env:
            values["shared_sampling"] = _parse_bool(
                "HOSTPULSE_SHARED_SAMPLING", env["HOSTPULSE_SHARED_SAMPLING"]
            )
        if "HOSTPULSE_LOG_LEVEL" in env:
            values["log_level"] = env["HOSTPULSE_LOG_LEVEL"]

        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


def _parse(kind: type, name: str, raw: str) -> Any:
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigError(f"invalid {name}: {raw!r}") from exc


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"invalid boolean for {name}: {raw!r}")


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stream handler to the `hostpulse` logger."""
    logger = logging.getLogger("hostpulse")
    logger.setLevel(level.upper())
    logger.propagate = False

    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    return logger
