"""Runtime settings read from the environment.

Centralises the ``DOCREDACT_*`` lookups so the CLI and the pipeline share one
view of configuration. Import has no side effects.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
import os


def _parse_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    v = value.strip().lower()
    if v in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _parse_int(value: str | None, *, default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_float(value: str | None, *, default: float) -> float:
    try:
        return float(value) if value is not None else default
    except ValueError:
        return default


@dataclass
class Settings:
    """Process-wide defaults for detection and export."""

    spacy_model: str = "en_core_web_lg"
    use_model: bool = True
    workers: int = 2
    tier: str = "free"
    regex_timeout: float = 2.0
    show_progress: bool = True
    hmac_key: Optional[str] = None

    @staticmethod
    def from_env() -> "Settings":
        return Settings(
            spacy_model=os.environ.get("DOCREDACT_SPACY_MODEL") or "en_core_web_lg",
            use_model=_parse_bool(os.environ.get("DOCREDACT_USE_MODEL"), default=True),
            workers=max(1, _parse_int(os.environ.get("DOCREDACT_WORKERS"), default=2)),
            tier=os.environ.get("DOCREDACT_TIER") or "free",
            regex_timeout=_parse_float(
                os.environ.get("DOCREDACT_REGEX_TIMEOUT"), default=2.0
            ),
            show_progress=_parse_bool(
                os.environ.get("DOCREDACT_PROGRESS"), default=True
            ),
            hmac_key=os.environ.get("DOCREDACT_HMAC_KEY"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings."""
    return Settings.from_env()


def reset_settings_cache() -> None:
    """Reset cached settings (useful in tests)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
