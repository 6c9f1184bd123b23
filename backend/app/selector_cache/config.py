"""
Selector Cache Configuration

Defaults mirror the constants the cache has always shipped with.
Every value can be overridden from the environment (or a .env file)
using the SELECTOR_CACHE_ prefix.
"""

import os
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "SELECTOR_CACHE_"

DEFAULT_TTL_MS = 24 * 60 * 60 * 1000  # 24 hours


@dataclass
class CacheConfig:
    """Configuration for the selector cache"""
    db_path: str = "data/selector_cache/selector_cache.db"
    default_ttl_ms: int = DEFAULT_TTL_MS
    # Minimum confidence for rows served from the durable store
    confidence_threshold: float = 0.7
    max_alternatives: int = 5
    prefetch_confidence_threshold: float = 0.6
    memory_cache_size: int = 1000
    query_limit: int = 100
    prediction_limit: int = 5
    low_confidence_limit: int = 50
    telemetry_path: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[Union[str, Path]] = None) -> "CacheConfig":
        """
        Build a config from SELECTOR_CACHE_* environment variables.

        Args:
            env_file: Optional .env file to load first (existing
                environment variables win)

        Returns:
            CacheConfig with overrides applied
        """
        if env_file is not None:
            load_dotenv(env_file)
        else:
            load_dotenv()

        config = cls()
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue

            current = getattr(config, f.name)
            try:
                if isinstance(current, bool):
                    value = raw.strip().lower() in ("1", "true", "yes", "on")
                elif isinstance(current, int):
                    value = int(raw)
                elif isinstance(current, float):
                    value = float(raw)
                else:
                    value = raw
            except ValueError:
                logger.warning(
                    f"[CONFIG] Ignoring {ENV_PREFIX}{f.name.upper()}={raw!r}: not a valid {type(current).__name__}"
                )
                continue

            setattr(config, f.name, value)

        return config
