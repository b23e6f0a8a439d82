"""
Network collaborators: registry metadata and tarball transport.
"""
from .registry import RegistryClient
from .transport import TarballFetcher

__all__ = ["RegistryClient", "TarballFetcher"]
