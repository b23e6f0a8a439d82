"""
Data models for package prefetching.

The Manifest model validates registry metadata at the client boundary so the
orchestrator only ever sees well-formed version documents. PackageSpec and
PrefetchResult are plain frozen dataclasses shared by the orchestrator, the
clients and the CLI.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from . import integrity as ssri
from .errors import InvalidSpecifier
from .integrity import IntegrityKey

__all__ = ["PackageSpec", "Dist", "Manifest", "PrefetchResult", "SpecKind"]

SpecKind = Literal["version", "tag", "range"]

_NAME_RE = re.compile(r"^(?:@[a-z0-9~][a-z0-9._~-]*/)?[a-z0-9~][a-z0-9._~-]*$", re.IGNORECASE)
_VERSION_RE = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)
_TAG_RE = re.compile(r"^[A-Za-z][A-Za-z0-9._-]*$")


@dataclass(frozen=True, slots=True)
class PackageSpec:
    """
    Parsed package specifier.

    ``raw`` preserves the caller's string; it is what results and cache keys
    are keyed on. ``selector`` is the part after the name separator, with a
    bare name meaning the ``latest`` dist-tag.
    """
    raw: str
    name: str
    selector: str
    kind: SpecKind

    @classmethod
    def parse(cls, raw: str) -> PackageSpec:
        """
        Parse ``name``, ``name@selector`` or ``@scope/name@selector``.

        Raises:
            InvalidSpecifier: If the name part is empty or malformed
        """
        text = raw.strip() if isinstance(raw, str) else ""
        if not text:
            raise InvalidSpecifier("Package specifier cannot be empty")

        # Scoped names start with '@', so the separator is the next '@'
        sep = text.find("@", 1)
        if sep == -1:
            name, selector = text, ""
        else:
            name, selector = text[:sep], text[sep + 1:]

        if not _NAME_RE.match(name):
            raise InvalidSpecifier(f"Invalid package name in specifier: {raw!r}")

        selector = selector.strip() or "latest"
        if _VERSION_RE.match(selector):
            kind: SpecKind = "version"
            selector = selector.lstrip("v")
        elif _TAG_RE.match(selector):
            kind = "tag"
        else:
            kind = "range"
        return cls(raw=raw, name=name, selector=selector, kind=kind)

    @property
    def escaped_name(self) -> str:
        """Name as it appears in a registry URL path (scope slash escaped)."""
        return self.name.replace("/", "%2f")

    def __str__(self) -> str:
        return self.raw


class Dist(BaseModel):
    """Distribution block of a version document."""
    model_config = ConfigDict(extra="allow", frozen=True)

    tarball: Optional[str] = Field(default=None, description="Tarball download URL")
    integrity: Optional[str] = Field(default=None, description="SRI integrity of the tarball")
    shasum: Optional[str] = Field(default=None, description="Legacy hex sha1 of the tarball")


class Manifest(BaseModel):
    """
    Resolved version metadata for a single package version.

    Registries return many more fields than the cache needs; those are kept
    as extras so the stored manifest view round-trips what the registry sent.
    """
    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    name: str = Field(..., description="Package name")
    version: str = Field(..., description="Exact package version")
    has_shrinkwrap: Optional[bool] = Field(default=None, alias="_hasShrinkwrap")
    integrity: Optional[str] = Field(default=None, alias="_integrity", description="Declared tarball integrity")
    resolved: Optional[str] = Field(default=None, alias="_resolved", description="Resolved tarball URL")
    dist: Dist = Field(default_factory=Dist)

    @field_validator("integrity")
    @classmethod
    def validate_integrity(cls, v):
        """Declared integrity must parse; MalformedIntegrity is a ValueError."""
        if v is not None:
            ssri.parse(v)
        return v

    @model_validator(mode="after")
    def validate_tarball_location(self) -> Manifest:
        if not self.resolved and not self.dist.tarball:
            raise ValueError(f"Manifest for {self.name}@{self.version} has no tarball location")
        return self

    @property
    def declared_integrity(self) -> Optional[IntegrityKey]:
        return ssri.parse(self.integrity) if self.integrity else None

    @property
    def tarball_url(self) -> str:
        return self.resolved or self.dist.tarball

    def to_dict(self) -> Dict[str, Any]:
        """Fields as the registry sent them, explicit nulls included."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)

    def to_json_bytes(self) -> bytes:
        """Canonical JSON (sorted keys, no whitespace) of the manifest view."""
        return json.dumps(
            self.to_dict(),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
        ).encode("utf-8")


@dataclass(frozen=True)
class PrefetchResult:
    """
    Outcome of a single prefetch call.

    - No cache configured: only ``spec`` is set.
    - Cache configured: ``manifest`` is always set. ``integrity`` is set only
      when the content was already stored before this call; a call that had
      to download leaves it None. ``by_digest`` is True only when the content
      was located through the caller-supplied digest.
    """
    spec: str
    manifest: Optional[Manifest] = None
    integrity: Optional[IntegrityKey] = None
    by_digest: Optional[bool] = None

    @property
    def cache_hit(self) -> bool:
        return self.integrity is not None

    def to_dict(self) -> Dict[str, Any]:
        if self.manifest is None:
            return {"spec": self.spec}
        return {
            "spec": self.spec,
            "manifest": self.manifest.to_dict(),
            "integrity": str(self.integrity) if self.integrity is not None else None,
            "byDigest": bool(self.by_digest),
        }
