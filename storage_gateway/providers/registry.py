# storage_gateway/providers/registry.py
"""
Provider registry.

Maps provider identifiers to adapter classes and instantiates a fresh adapter
per resolution. Registration is explicit: there is no plugin discovery.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from storage_gateway.errors import UnsupportedProviderError
from storage_gateway.monitoring.logger import log
from storage_gateway.providers.backblaze_provider import BackblazeB2Provider
from storage_gateway.providers.base import CloudStorageProvider
from storage_gateway.providers.config import ProviderConfigResolver
from storage_gateway.providers.dropbox_provider import DropboxProvider
from storage_gateway.providers.google_cloud_provider import GoogleCloudStorageProvider
from storage_gateway.providers.google_drive_provider import GoogleDriveProvider
from storage_gateway.providers.mega_provider import MegaProvider
from storage_gateway.providers.onedrive_provider import OneDriveProvider


class ProviderName(str, Enum):
    GOOGLE_CLOUD = "google-cloud"
    DROPBOX = "dropbox"
    MEGA = "mega"
    GOOGLE_DRIVE = "google-drive"
    BACKBLAZE = "backblaze"
    ONEDRIVE = "onedrive"


def normalize_provider_name(name: Any) -> str:
    if isinstance(name, ProviderName):
        return name.value
    return str(name or "").strip().lower()


class ProviderRegistry:
    """Explicit name -> adapter class map."""

    def __init__(
        self,
        providers: Optional[Dict[str, Type[CloudStorageProvider]]] = None,
        config_resolver: Optional[ProviderConfigResolver] = None,
        session=None,
    ):
        self._providers: Dict[str, Type[CloudStorageProvider]] = {}
        self._config_resolver = config_resolver
        self._session = session
        for name, provider_class in (providers or {}).items():
            self.register(name, provider_class)

    def register(self, name: str, provider_class: Type[CloudStorageProvider]) -> None:
        """
        Register a provider class under `name`.

        Raises:
            ValueError: If provider_class doesn't implement CloudStorageProvider
        """
        if not (isinstance(provider_class, type) and issubclass(provider_class, CloudStorageProvider)):
            raise ValueError(
                f"Provider class must inherit from CloudStorageProvider, got {provider_class}"
            )
        key = normalize_provider_name(name)
        self._providers[key] = provider_class
        log("INFO", f"Registered storage provider: {key}", module="registry")

    def resolve(self, name: Any) -> CloudStorageProvider:
        """Return a new adapter for `name`; unknown names list what is registered."""
        key = normalize_provider_name(name)
        provider_class = self._providers.get(key)
        if provider_class is None:
            raise UnsupportedProviderError(str(name), self.names())
        return provider_class(config_resolver=self._config_resolver, session=self._session)

    def names(self) -> List[str]:
        return list(self._providers.keys())

    def is_supported(self, name: Any) -> bool:
        return normalize_provider_name(name) in self._providers

    def info(self, name: Any) -> Dict[str, Any]:
        key = normalize_provider_name(name)
        provider_class = self._providers.get(key)
        if provider_class is None:
            raise UnsupportedProviderError(str(name), self.names())
        return {
            "name": key,
            "display_name": provider_class.display_name or key,
            "class": provider_class.__name__,
            "module": provider_class.__module__,
            "supports_create_folder": provider_class.supports_create_folder,
            "docstring": provider_class.__doc__,
        }


BUILTIN_PROVIDERS: Dict[str, Type[CloudStorageProvider]] = {
    ProviderName.GOOGLE_CLOUD.value: GoogleCloudStorageProvider,
    ProviderName.DROPBOX.value: DropboxProvider,
    ProviderName.MEGA.value: MegaProvider,
    ProviderName.GOOGLE_DRIVE.value: GoogleDriveProvider,
    ProviderName.BACKBLAZE.value: BackblazeB2Provider,
    ProviderName.ONEDRIVE.value: OneDriveProvider,
}

default_registry = ProviderRegistry(BUILTIN_PROVIDERS)


def register_provider(name: str, provider_class: Type[CloudStorageProvider]) -> None:
    default_registry.register(name, provider_class)


def get_provider(name: Any) -> CloudStorageProvider:
    return default_registry.resolve(name)


def list_providers() -> List[str]:
    return default_registry.names()


def get_provider_info(name: Any) -> Dict[str, Any]:
    return default_registry.info(name)
