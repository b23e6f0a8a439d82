"""
Prefetch cache error classes.

Provides a clear taxonomy of errors that can occur while resolving, fetching,
verifying and storing package content. Collaborator exceptions (httpx,
pydantic, json) are mapped onto this hierarchy at the client boundary so the
orchestrator and callers see one consistent interface.
"""
from __future__ import annotations


class PrefetchError(Exception):
    """Base class for all prefetch cache errors."""
    pass


class MalformedIntegrity(PrefetchError, ValueError):
    """
    Integrity string could not be parsed.

    Raised when:
    - The string is empty or contains no valid hash tokens
    - A token is not of the form <algorithm>-<base64 digest>
    - The algorithm is not one of the supported hash functions
    """
    pass


class IntegrityMismatch(PrefetchError):
    """
    Content digest validation failed.

    Raised when:
    - Fetched tarball bytes do not match the manifest's declared integrity
    - put(): bytes do not match the integrity supplied by the caller
    - read(): stored content no longer matches its recorded integrity
    """

    def __init__(self, message: str, expected: str | None = None, actual: str | None = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class RegistryError(PrefetchError):
    """
    Metadata resolution failed.

    Raised when:
    - The registry answers with a non-2xx status
    - The response body is not valid JSON or fails manifest validation
    - The requested version or tag does not exist
    - A network error prevents reaching the registry
    """
    pass


class PackageNotFound(RegistryError):
    """Registry returned 404 for the package document."""
    pass


class TransportError(PrefetchError):
    """
    Tarball download failed.

    Raised on non-2xx responses and connection failures. ``status_code`` is
    None when no response was received.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidSpecifier(PrefetchError, ValueError):
    """Package specifier string could not be parsed."""
    pass


__all__ = [
    "PrefetchError",
    "MalformedIntegrity",
    "IntegrityMismatch",
    "RegistryError",
    "PackageNotFound",
    "TransportError",
    "InvalidSpecifier",
]
