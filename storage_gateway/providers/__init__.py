"""
Cloud storage providers.

Uniform interface over Google Cloud Storage, Dropbox, Mega, Google Drive,
Backblaze B2 and OneDrive.
"""

from storage_gateway.providers.base import CloudStorageProvider, FileListItem, UploadResult
from storage_gateway.providers.registry import ProviderName, ProviderRegistry, default_registry, get_provider

__all__ = [
    "CloudStorageProvider",
    "FileListItem",
    "UploadResult",
    "ProviderName",
    "ProviderRegistry",
    "default_registry",
    "get_provider",
]
