"""
Cache key construction helpers.

Centralizes the logic for building index keys from a registry URL and a
package specifier, so the orchestrator and maintenance tooling agree on them.
"""
from __future__ import annotations

from typing import Literal

KeyKind = Literal["manifest", "tarball"]

KEY_PREFIX = "prefetch-cache"


def normalize_registry(registry: str) -> str:
    """Strip trailing slashes so ``https://r/`` and ``https://r`` share keys."""
    if not registry:
        raise ValueError("registry cannot be empty")
    return registry.rstrip("/")


def build_key(kind: KeyKind, registry: str, spec: str) -> str:
    """
    Build an index key.

    Examples:
        >>> build_key("tarball", "https://mock.reg/", "foo@1.0.0")
        'prefetch-cache:tarball:https://mock.reg/foo@1.0.0'
    """
    if not spec:
        raise ValueError("spec cannot be empty")
    return f"{KEY_PREFIX}:{kind}:{normalize_registry(registry)}/{spec}"


def manifest_key(registry: str, spec: str) -> str:
    return build_key("manifest", registry, spec)


def tarball_key(registry: str, spec: str) -> str:
    return build_key("tarball", registry, spec)


def parse_key(key: str) -> tuple[KeyKind, str]:
    """
    Split a key back into its kind and ``<registry>/<spec>`` location.

    Raises:
        ValueError: If ``key`` was not built by :func:`build_key`
    """
    parts = key.split(":", 2)
    if len(parts) != 3 or parts[0] != KEY_PREFIX or parts[1] not in ("manifest", "tarball"):
        raise ValueError(f"Invalid cache key format: {key}. Expected {KEY_PREFIX}:<kind>:<location>")
    return parts[1], parts[2]  # type: ignore[return-value]


__all__ = ["KEY_PREFIX", "build_key", "manifest_key", "tarball_key", "parse_key", "normalize_registry"]
