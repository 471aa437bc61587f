"""Process configuration, read once from the environment at startup."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigError, MissingCredential
from .providers.bfl import BFLClient

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float(env: Mapping[str, str], name: str) -> Optional[float]:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    api_key: str
    base_url: str = BFLClient.BASE_URL
    poll_max_attempts: int = 60
    poll_interval_ms: int = 2000
    poll_transient_retries: int = 0
    request_timeout: float = 60
    registry_max_entries: int = 500
    registry_ttl_seconds: Optional[float] = None
    output_dir: Path = Path("generated-images")
    log_level: str = "INFO"

    def __repr__(self) -> str:
        # Keep the API key out of logs and tracebacks
        return f"Settings(base_url={self.base_url!r}, output_dir={str(self.output_dir)!r})"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``env`` (default: os.environ after loading .env).

        Raises:
            MissingCredential: BFL_API_KEY is not set.
            ConfigError: a numeric variable is malformed.
        """
        if env is None:
            load_dotenv()
            env = os.environ

        api_key = (env.get("BFL_API_KEY") or "").strip()
        if not api_key:
            raise MissingCredential("BFL_API_KEY")

        log_level = (env.get("BFL_LOG_LEVEL") or "INFO").upper()
        if log_level not in LOG_LEVELS:
            raise ConfigError(f"BFL_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

        return cls(
            api_key=api_key,
            base_url=env.get("BFL_API_BASE_URL") or BFLClient.BASE_URL,
            poll_max_attempts=_int(env, "BFL_POLL_MAX_ATTEMPTS", 60, minimum=1),
            poll_interval_ms=_int(env, "BFL_POLL_INTERVAL_MS", 2000),
            poll_transient_retries=_int(env, "BFL_POLL_TRANSIENT_RETRIES", 0),
            request_timeout=_float(env, "BFL_REQUEST_TIMEOUT") or 60,
            registry_max_entries=_int(env, "BFL_REGISTRY_MAX_ENTRIES", 500, minimum=1),
            registry_ttl_seconds=_float(env, "BFL_REGISTRY_TTL_SECONDS"),
            output_dir=Path(env.get("BFL_OUTPUT_DIR") or "generated-images").expanduser(),
            log_level=log_level,
        )
