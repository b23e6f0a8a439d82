"""
Settings and configuration for the prefetch cache.

Centralizes configuration values and provides validation with fail-fast behavior.
Loads settings from environment variables when clients are constructed.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from .integrity import DEFAULT_ALGORITHMS, SUPPORTED_ALGORITHMS

__all__ = ["Settings", "create_settings_from_env", "DEFAULT_REGISTRY"]

DEFAULT_REGISTRY = "https://registry.npmjs.org"


@dataclass(frozen=True)
class Settings:
    """
    Configuration settings for the prefetch cache clients.

    Registry Settings:
        registry_url: Default registry used when a call does not name one
        http_timeout_s: HTTP request timeout in seconds
        http_retry: Extra attempts for timed-out requests (0=no retry)
        user_agent: User-Agent header sent to registries and tarball hosts

    Cache Settings:
        cache_dir: Default cache root for the CLI (library calls must pass
            ``cache`` explicitly; there is no implicit cache)
        default_algorithms: Algorithms used to digest content that arrives
            without a declared integrity
    """
    registry_url: str = DEFAULT_REGISTRY
    cache_dir: Optional[str] = None
    http_timeout_s: float = 30.0
    http_retry: int = 2
    user_agent: str = "prefetch-cache/0.1.0"
    default_algorithms: Tuple[str, ...] = DEFAULT_ALGORITHMS

    def __post_init__(self):
        """Validate settings on construction."""
        if not self.registry_url:
            raise ValueError("registry_url is required")

        url_pattern = r"^https?://[a-zA-Z0-9.-]+(?::[0-9]+)?(?:/.*)?$"
        if not re.match(url_pattern, self.registry_url):
            raise ValueError(f"Invalid registry_url format: {self.registry_url}")

        if self.http_timeout_s <= 0:
            raise ValueError(f"http_timeout_s must be positive, got {self.http_timeout_s}")

        if self.http_retry < 0:
            raise ValueError(f"http_retry must be non-negative, got {self.http_retry}")

        if not self.default_algorithms:
            raise ValueError("default_algorithms cannot be empty")
        unknown = [a for a in self.default_algorithms if a not in SUPPORTED_ALGORITHMS]
        if unknown:
            raise ValueError(
                f"Unsupported algorithms in default_algorithms: {', '.join(unknown)}. "
                f"Expected any of: {', '.join(SUPPORTED_ALGORITHMS)}"
            )


def create_settings_from_env() -> Settings:
    """
    Load settings from environment variables.

    Environment Variables:
        - PREFETCH_REGISTRY (default: https://registry.npmjs.org)
        - PREFETCH_CACHE (optional)
        - PREFETCH_HTTP_TIMEOUT (default: 30.0)
        - PREFETCH_HTTP_RETRY (default: 2)
        - PREFETCH_ALGORITHMS (default: sha512, comma separated)

    Returns:
        Settings object with validated configuration

    Raises:
        ValueError: If configuration is invalid

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    def get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        return float(value) if value else default

    def get_int(key: str, default: int) -> int:
        value = os.getenv(key)
        return int(value) if value else default

    algorithms = os.getenv("PREFETCH_ALGORITHMS")
    default_algorithms = (
        tuple(a.strip() for a in algorithms.split(",") if a.strip())
        if algorithms
        else DEFAULT_ALGORITHMS
    )

    return Settings(
        registry_url=os.getenv("PREFETCH_REGISTRY") or DEFAULT_REGISTRY,
        cache_dir=os.getenv("PREFETCH_CACHE") or None,
        http_timeout_s=get_float("PREFETCH_HTTP_TIMEOUT", 30.0),
        http_retry=get_int("PREFETCH_HTTP_RETRY", 2),
        default_algorithms=default_algorithms,
    )
