# CirrusFlags/cirrusflags/config.py
"""Engine configuration for CirrusFlags.

Settings come from environment variables (optionally loaded from a ``.env``
file by python-dotenv):

- ``CIRRUS_CACHE_TTL``: evaluation cache TTL in seconds (default 300, 0
  disables expiry).
- ``CIRRUS_SEGMENT_CACHE_TTL``: segment match cache TTL in seconds
  (default 60, 0 disables the segment cache).
- ``CIRRUS_CACHE_MAX_SIZE`` / ``CIRRUS_SEGMENT_CACHE_MAX_SIZE``: entry limits
  of the two caches (default 10000 each).
- ``CIRRUS_OFFLINE_MODE``: serve expired cache entries as ``STALE``.
- ``CIRRUS_DEBUG``: per-evaluation debug logging and rule traces.
- ``CIRRUS_FALLBACKS``: JSON object of per-flag fallback values.
- ``CIRRUS_FLAGS_FILE``: JSON file of flags/segments loaded at start-up.
"""


from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from cirrusflags.errors.exceptions import FlagConfigurationError


DEFAULT_CACHE_TTL = 300.0
DEFAULT_SEGMENT_CACHE_TTL = 60.0
DEFAULT_CACHE_MAX_SIZE = 10000


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise FlagConfigurationError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise FlagConfigurationError(f"{name} must not be negative")
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise FlagConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value < 1:
        raise FlagConfigurationError(f"{name} must be at least 1")
    return value


@dataclass(frozen=True)
class EngineConfig:
    """Immutable engine settings.

    Attributes:
        cache_ttl: Seconds an evaluation result stays fresh (0 = forever).
        segment_cache_ttl: Seconds a segment match stays cached.
        cache_max_size: Most evaluation results kept; least recently used
            entries are evicted first.
        segment_cache_max_size: Most segment matches kept.
        offline_mode: Serve expired cache entries (marked stale) instead of
            re-evaluating.
        debug: Log each evaluation and collect targeting traces.
        default_fallback: Value served for unknown flags and errors when no
            per-flag fallback exists.
        fallbacks: Per-flag fallback values keyed by flag key.
        flags_file: Optional JSON bootstrap file for the HTTP app.
    """

    cache_ttl: float = DEFAULT_CACHE_TTL
    segment_cache_ttl: float = DEFAULT_SEGMENT_CACHE_TTL
    cache_max_size: int = DEFAULT_CACHE_MAX_SIZE
    segment_cache_max_size: int = DEFAULT_CACHE_MAX_SIZE
    offline_mode: bool = False
    debug: bool = False
    default_fallback: Any = False
    fallbacks: Dict[str, Any] = field(default_factory=dict)
    flags_file: Optional[str] = None

    def fallback_for(self, flag_key: str) -> Any:
        return self.fallbacks.get(flag_key, self.default_fallback)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a config from the process environment.

        Raises:
            FlagConfigurationError: If a variable holds an invalid value.
        """
        load_dotenv()

        raw_fallbacks = os.getenv("CIRRUS_FALLBACKS", "").strip()
        fallbacks: Dict[str, Any] = {}
        if raw_fallbacks:
            try:
                fallbacks = json.loads(raw_fallbacks)
            except ValueError as e:
                raise FlagConfigurationError(
                    f"CIRRUS_FALLBACKS is not valid JSON: {e}"
                )
            if not isinstance(fallbacks, dict):
                raise FlagConfigurationError(
                    "CIRRUS_FALLBACKS must be a JSON object"
                )

        return cls(
            cache_ttl=_env_float("CIRRUS_CACHE_TTL", DEFAULT_CACHE_TTL),
            segment_cache_ttl=_env_float(
                "CIRRUS_SEGMENT_CACHE_TTL", DEFAULT_SEGMENT_CACHE_TTL
            ),
            cache_max_size=_env_int(
                "CIRRUS_CACHE_MAX_SIZE", DEFAULT_CACHE_MAX_SIZE
            ),
            segment_cache_max_size=_env_int(
                "CIRRUS_SEGMENT_CACHE_MAX_SIZE", DEFAULT_CACHE_MAX_SIZE
            ),
            offline_mode=_env_bool("CIRRUS_OFFLINE_MODE"),
            debug=_env_bool("CIRRUS_DEBUG"),
            fallbacks=fallbacks,
            flags_file=os.getenv("CIRRUS_FLAGS_FILE") or None,
        )
