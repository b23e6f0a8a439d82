"""
Integrity codec for content-addressed package data.

Integrity keys use the Subresource Integrity notation that package registries
publish in ``dist.integrity``: one or more ``<algorithm>-<base64 digest>``
tokens separated by whitespace, e.g. ``sha512-9KhEAbz...==``. A key may carry
several algorithms; two keys are compatible when any algorithm they share has
an equal digest.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple, Union

from .errors import IntegrityMismatch, MalformedIntegrity

__all__ = [
    "Hash",
    "IntegrityKey",
    "SUPPORTED_ALGORITHMS",
    "DEFAULT_ALGORITHMS",
    "parse",
    "from_bytes",
    "from_hex",
    "matches",
    "check_data",
]

# Weakest to strongest; pick_algorithm() relies on this order
SUPPORTED_ALGORITHMS: Tuple[str, ...] = ("sha1", "sha256", "sha384", "sha512")
DEFAULT_ALGORITHMS: Tuple[str, ...] = ("sha512",)

_TOKEN_RE = re.compile(r"^(?P<algorithm>[a-z0-9]+)-(?P<digest>[A-Za-z0-9+/]+={0,2})(?:\?(?P<options>[\x21-\x7e]*))?$")


@dataclass(frozen=True, slots=True)
class Hash:
    """A single (algorithm, base64 digest) pair."""
    algorithm: str
    digest: str
    options: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.algorithm not in SUPPORTED_ALGORITHMS:
            raise MalformedIntegrity(f"Unsupported integrity algorithm: {self.algorithm}")
        try:
            raw = base64.b64decode(self.digest, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedIntegrity(f"Digest for {self.algorithm} is not valid base64: {e}") from e
        if len(raw) != hashlib.new(self.algorithm).digest_size:
            raise MalformedIntegrity(
                f"Digest for {self.algorithm} has wrong length: {len(raw)} bytes"
            )

    def hexdigest(self) -> str:
        return base64.b64decode(self.digest).hex()

    def __str__(self) -> str:
        if self.options:
            return f"{self.algorithm}-{self.digest}?{'?'.join(self.options)}"
        return f"{self.algorithm}-{self.digest}"


@dataclass(frozen=True, slots=True)
class IntegrityKey:
    """
    One or more hashes of the same content.

    Equality is structural; use :func:`matches` to test compatibility between
    keys that may carry different algorithm sets.
    """
    hashes: Tuple[Hash, ...]

    def __post_init__(self) -> None:
        if not self.hashes:
            raise MalformedIntegrity("Integrity key must contain at least one hash")

    @property
    def algorithms(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(h.algorithm for h in self.hashes))

    def get(self, algorithm: str) -> Optional[Hash]:
        for h in self.hashes:
            if h.algorithm == algorithm:
                return h
        return None

    def pick_algorithm(self) -> str:
        """Return the strongest algorithm present in this key."""
        return max(self.algorithms, key=SUPPORTED_ALGORITHMS.index)

    def strongest(self) -> Hash:
        return self.get(self.pick_algorithm())

    def hexdigest(self, algorithm: Optional[str] = None) -> str:
        """Hex digest for ``algorithm`` (strongest by default)."""
        h = self.get(algorithm) if algorithm else self.strongest()
        if h is None:
            raise KeyError(algorithm)
        return h.hexdigest()

    def matches(self, other: IntegrityKey) -> Optional[Hash]:
        """Return the first shared hash with equal digest, or None."""
        for h in self.hashes:
            candidate = other.get(h.algorithm)
            if candidate is not None and candidate.digest == h.digest:
                return h
        return None

    def __str__(self) -> str:
        return " ".join(str(h) for h in self.hashes)


def parse(value: Union[str, IntegrityKey]) -> IntegrityKey:
    """
    Parse an SRI string into an IntegrityKey.

    Args:
        value: Integrity string, or an IntegrityKey (returned unchanged)

    Returns:
        Parsed IntegrityKey

    Raises:
        MalformedIntegrity: If the string is empty or any token is invalid
    """
    if isinstance(value, IntegrityKey):
        return value
    if not isinstance(value, str):
        raise MalformedIntegrity(f"Integrity must be a string, got {type(value).__name__}")

    tokens = value.split()
    if not tokens:
        raise MalformedIntegrity("Integrity string is empty")

    hashes = []
    for token in tokens:
        m = _TOKEN_RE.match(token)
        if not m:
            raise MalformedIntegrity(f"Malformed integrity token: {token!r}")
        options = tuple(m.group("options").split("?")) if m.group("options") else ()
        hashes.append(Hash(m.group("algorithm"), m.group("digest"), options))
    return IntegrityKey(tuple(hashes))


def from_bytes(data: bytes, algorithms: Iterable[str] = DEFAULT_ALGORITHMS) -> IntegrityKey:
    """Compute an IntegrityKey over ``data`` for each requested algorithm."""
    hashes = []
    for algorithm in dict.fromkeys(algorithms):
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise MalformedIntegrity(f"Unsupported integrity algorithm: {algorithm}")
        digest = base64.b64encode(hashlib.new(algorithm, data).digest()).decode("ascii")
        hashes.append(Hash(algorithm, digest))
    return IntegrityKey(tuple(hashes))


def from_hex(hexdigest: str, algorithm: str = "sha1") -> IntegrityKey:
    """
    Build an IntegrityKey from a hex digest.

    Registries that predate SRI only publish ``dist.shasum`` (hex sha1).
    """
    try:
        raw = bytes.fromhex(hexdigest)
    except ValueError as e:
        raise MalformedIntegrity(f"Invalid hex digest: {hexdigest!r}") from e
    return IntegrityKey((Hash(algorithm, base64.b64encode(raw).decode("ascii")),))


def matches(a: IntegrityKey, b: IntegrityKey) -> bool:
    """True iff ``a`` and ``b`` share an algorithm with an equal digest."""
    return a.matches(b) is not None


def check_data(data: bytes, expected: Union[str, IntegrityKey]) -> IntegrityKey:
    """
    Verify ``data`` against ``expected``.

    The digest is computed with the algorithms present in ``expected``.

    Returns:
        The computed IntegrityKey

    Raises:
        IntegrityMismatch: If no shared algorithm matches
    """
    expected = parse(expected)
    actual = from_bytes(data, expected.algorithms)
    if not matches(actual, expected):
        raise IntegrityMismatch(
            f"Integrity check failed: expected {expected}, got {actual}",
            expected=str(expected),
            actual=str(actual),
        )
    return actual
