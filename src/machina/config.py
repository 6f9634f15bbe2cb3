"""Configuration: frozen runtime defaults resolved from the environment."""

from __future__ import annotations

from dataclasses import dataclass
import os

from dotenv import load_dotenv

from machina.errors import ConfigurationError

load_dotenv()

#: Three hours, in milliseconds.
DEFAULT_TTL_MS = 3 * 60 * 60 * 1000
DEFAULT_MAX_STALE_BUFFER = 0
DEFAULT_CACHED_OUTCOME = "success"

_ENV_TTL_MS = "MACHINA_CACHE_TTL_MS"
_ENV_MAX_STALE_BUFFER = "MACHINA_CACHE_MAX_STALE_BUFFER"
_ENV_CACHED_OUTCOME = "MACHINA_CACHE_OUTCOME"


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigurationError(
            f"{name} must be an integer, got {raw!r}",
            hint=f"Unset {name} or set it to a whole number.",
        ) from None


@dataclass(frozen=True)
class Config:
    """Immutable defaults applied to cache policies.

    Example:
        config = Config.from_env()
        policy = CachePolicy.from_config(config, store=MemoryStore())
    """

    #: Entries older than ``now - ttl_ms`` are ignored by lookups.
    cache_ttl_ms: int = DEFAULT_TTL_MS
    #: Expired entries tolerated per key before eviction runs.
    cache_max_stale_buffer: int = DEFAULT_MAX_STALE_BUFFER
    cache_outcome: str = DEFAULT_CACHED_OUTCOME

    def __post_init__(self) -> None:
        """Validate ranges so policies built from this config are usable."""
        if self.cache_ttl_ms < 0:
            raise ConfigurationError(
                f"cache_ttl_ms must be ≥ 0, got {self.cache_ttl_ms}",
                hint="A TTL of 0 makes every stored entry immediately expired.",
            )
        if self.cache_max_stale_buffer < 0:
            raise ConfigurationError(
                "cache_max_stale_buffer must be ≥ 0, "
                f"got {self.cache_max_stale_buffer}",
                hint="Use 0 to evict expired entries as soon as a miss occurs.",
            )
        if not self.cache_outcome:
            raise ConfigurationError(
                "cache_outcome must be a non-empty outcome name",
                hint="The default cached outcome is 'success'.",
            )

    @classmethod
    def from_env(cls) -> Config:
        """Build a Config from ``MACHINA_CACHE_*`` environment variables."""
        outcome = os.environ.get(_ENV_CACHED_OUTCOME, "").strip()
        return cls(
            cache_ttl_ms=_int_from_env(_ENV_TTL_MS, DEFAULT_TTL_MS),
            cache_max_stale_buffer=_int_from_env(
                _ENV_MAX_STALE_BUFFER, DEFAULT_MAX_STALE_BUFFER
            ),
            cache_outcome=outcome or DEFAULT_CACHED_OUTCOME,
        )
