"""
Registry metadata client.

Resolves a package specifier to a single version manifest by fetching the
package document ("packument") from an npm-compatible registry and picking an
exact version or a dist-tag. Version ranges are deliberately not resolved.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from .. import integrity as ssri
from ..errors import MalformedIntegrity, PackageNotFound, RegistryError
from ..models import Manifest, PackageSpec
from ..runtime_types import MetadataClient
from ..settings import Settings
from ..storage.keys import normalize_registry
from .http import build_async_client, request_with_retries

__all__ = ["RegistryClient", "pick_manifest"]

logger = logging.getLogger(__name__)

ACCEPT = "application/json"


class RegistryClient(MetadataClient):
    """
    httpx-backed metadata client.

    The client may be injected (e.g. with an httpx.MockTransport for tests);
    an injected client is not closed by aclose().
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._owns_client = client is None
        self.client = client if client is not None else build_async_client(settings)

    async def resolve(self, spec: PackageSpec, *, registry: str) -> Manifest:
        """
        Resolve ``spec`` against ``registry``.

        Args:
            spec: Parsed package specifier
            registry: Registry base URL

        Returns:
            Validated Manifest for the selected version

        Raises:
            PackageNotFound: If the registry has no document for the package
            RegistryError: On other non-2xx responses, network failures,
                malformed documents, unknown versions or range specifiers
        """
        if spec.kind == "range":
            raise RegistryError(f"Version ranges are not supported: {spec}")

        url = f"{normalize_registry(registry)}/{spec.escaped_name}"
        try:
            response = await request_with_retries(
                self.client, "GET", url,
                retries=self.settings.http_retry,
                headers={"Accept": ACCEPT},
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise PackageNotFound(f"Package not found: {spec.name} ({url})") from e
            raise RegistryError(f"Registry error {e.response.status_code} for {url}") from e
        except httpx.RequestError as e:
            raise RegistryError(f"Network error resolving {spec}: {e}") from e

        try:
            packument = response.json()
        except json.JSONDecodeError as e:
            raise RegistryError(f"Invalid JSON in package document for {spec.name}: {e}") from e

        return pick_manifest(spec, packument)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> RegistryClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


def pick_manifest(spec: PackageSpec, packument: Any) -> Manifest:
    """
    Select the version document matching ``spec`` from a package document.

    Fills ``_resolved`` and ``_integrity`` from ``dist`` when the registry did
    not supply them; a legacy hex ``shasum`` becomes a sha1 integrity.

    Raises:
        RegistryError: If the document is malformed or has no matching version
    """
    if not isinstance(packument, dict) or not isinstance(packument.get("versions"), dict):
        raise RegistryError(f"Package document for {spec.name} has no versions")

    versions: Dict[str, Any] = packument["versions"]
    if spec.kind == "version":
        version = spec.selector
    else:
        version = (packument.get("dist-tags") or {}).get(spec.selector)

    if version is None or version not in versions:
        raise RegistryError(f"No matching version for {spec} in {spec.name}")

    doc = dict(versions[version])
    dist = doc.get("dist") or {}
    if not doc.get("_resolved") and dist.get("tarball"):
        doc["_resolved"] = dist["tarball"]
    if not doc.get("_integrity"):
        try:
            if dist.get("integrity"):
                doc["_integrity"] = dist["integrity"]
            elif dist.get("shasum"):
                doc["_integrity"] = str(ssri.from_hex(dist["shasum"], "sha1"))
        except MalformedIntegrity as e:
            raise RegistryError(f"Invalid shasum for {spec}: {e}") from e

    try:
        manifest = Manifest.model_validate(doc)
    except ValidationError as e:
        raise RegistryError(f"Invalid manifest for {spec}: {e}") from e

    logger.debug(f"Resolved {spec} to {manifest.name}@{manifest.version}")
    return manifest
