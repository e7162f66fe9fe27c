"""Runtime settings, read from the environment (and a local .env file)."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


HEADLESS = _env_bool("HEADLESS", "true")
TIMEOUT = int(os.getenv("TIMEOUT", "30000"))
LOCATE_TIMEOUT_MS = int(os.getenv("LOCATE_TIMEOUT_MS", "10000"))
LOCATE_CANDIDATE_MAX_MS = int(os.getenv("LOCATE_CANDIDATE_MAX_MS", "3000"))
POPUP_TIMEOUT_MS = int(os.getenv("POPUP_TIMEOUT_MS", "15000"))
CAPTURE_TIMEOUT_MS = int(os.getenv("CAPTURE_TIMEOUT_MS", "60000"))
STAGE_TIMEOUT_S = float(os.getenv("STAGE_TIMEOUT_S", "180"))

# Randomized pauses between UI actions
POLITENESS_ENABLED = _env_bool("POLITENESS_ENABLED", "true")
POLITENESS_MIN_MS = int(os.getenv("POLITENESS_MIN_MS", "500"))
POLITENESS_MAX_MS = int(os.getenv("POLITENESS_MAX_MS", "1500"))

MAX_CONCURRENT_SESSIONS = int(os.getenv("MAX_CONCURRENT_SESSIONS", "2"))

# Address -> parcel identifier lookup service
RESOLVER_ENDPOINT = os.getenv("RESOLVER_ENDPOINT", "")
RESOLVER_TOKEN = os.getenv("RESOLVER_TOKEN", "")
RESOLVER_TIMEOUT_S = float(os.getenv("RESOLVER_TIMEOUT_S", "20"))


@dataclass(frozen=True)
class RetrievalSettings:
    """Read-only settings shared by every request."""

    headless: bool = HEADLESS
    timeout_ms: int = TIMEOUT
    locate_timeout_ms: int = LOCATE_TIMEOUT_MS
    locate_candidate_max_ms: int = LOCATE_CANDIDATE_MAX_MS
    popup_timeout_ms: int = POPUP_TIMEOUT_MS
    capture_timeout_ms: int = CAPTURE_TIMEOUT_MS
    stage_timeout_s: float = STAGE_TIMEOUT_S
    politeness_enabled: bool = POLITENESS_ENABLED
    politeness_min_ms: int = POLITENESS_MIN_MS
    politeness_max_ms: int = POLITENESS_MAX_MS
    max_concurrent_sessions: int = MAX_CONCURRENT_SESSIONS
    resolver_endpoint: Optional[str] = RESOLVER_ENDPOINT or None
    resolver_token: Optional[str] = RESOLVER_TOKEN or None
    resolver_timeout_s: float = RESOLVER_TIMEOUT_S

    @classmethod
    def from_env(cls) -> "RetrievalSettings":
        """Build settings from the current environment, not the import-time snapshot."""
        settings = cls(
            headless=_env_bool("HEADLESS", "true"),
            timeout_ms=int(os.getenv("TIMEOUT", "30000")),
            locate_timeout_ms=int(os.getenv("LOCATE_TIMEOUT_MS", "10000")),
            locate_candidate_max_ms=int(os.getenv("LOCATE_CANDIDATE_MAX_MS", "3000")),
            popup_timeout_ms=int(os.getenv("POPUP_TIMEOUT_MS", "15000")),
            capture_timeout_ms=int(os.getenv("CAPTURE_TIMEOUT_MS", "60000")),
            stage_timeout_s=float(os.getenv("STAGE_TIMEOUT_S", "180")),
            politeness_enabled=_env_bool("POLITENESS_ENABLED", "true"),
            politeness_min_ms=int(os.getenv("POLITENESS_MIN_MS", "500")),
            politeness_max_ms=int(os.getenv("POLITENESS_MAX_MS", "1500")),
            max_concurrent_sessions=int(os.getenv("MAX_CONCURRENT_SESSIONS", "2")),
            resolver_endpoint=os.getenv("RESOLVER_ENDPOINT") or None,
            resolver_token=os.getenv("RESOLVER_TOKEN") or None,
            resolver_timeout_s=float(os.getenv("RESOLVER_TIMEOUT_S", "20")),
        )
        settings.validate()
        return settings

    def validate(self) -> "RetrievalSettings":
        for name in (
            "timeout_ms",
            "locate_timeout_ms",
            "locate_candidate_max_ms",
            "popup_timeout_ms",
            "capture_timeout_ms",
            "stage_timeout_s",
            "resolver_timeout_s",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.politeness_min_ms < 0 or self.politeness_max_ms < self.politeness_min_ms:
            raise ConfigurationError("politeness bounds must satisfy 0 <= min <= max")
        if self.max_concurrent_sessions < 1:
            raise ConfigurationError("max_concurrent_sessions must be at least 1")
        return self
