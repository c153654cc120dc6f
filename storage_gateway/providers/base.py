# storage_gateway/providers/base.py
"""
Base interface for cloud storage providers.

Every provider (Google Cloud Storage, Dropbox, Mega, Google Drive,
Backblaze B2, OneDrive) implements the same capability set. The public
methods defined here validate input, wrap the provider-specific hooks and
translate unexpected failures into `ProviderError`; concrete adapters only
implement the underscore hooks.

Adapters are stateless per call: configuration is re-resolved and transient
credentials (tokens, account authorizations, logins) are re-derived on every
operation.
"""
import mimetypes
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

import aiohttp

from storage_gateway.errors import (
    ConfigurationError,
    NotFoundError,
    ProviderError,
    ValidationError,
)
from storage_gateway.monitoring.logger import log
from storage_gateway.providers.config import ProviderConfigResolver
from storage_gateway.providers.http import RemoteCallError

FOLDER_CONTENT_TYPE = "folder"


@dataclass
class UploadResult:
    """Result of a successful upload."""
    url: str
    storage_name: str


@dataclass
class FileListItem:
    """One entry of a folder listing."""
    name: str
    size: Union[int, str, None]
    content_type: str
    path: str
    is_folder: bool = False
    created: Optional[str] = None
    updated: Optional[str] = None
    original_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_folder_path(folder_path: Optional[str]) -> str:
    """Strip leading/trailing slashes; reject traversal and backslashes."""
    if not folder_path:
        return ""
    if "\\" in folder_path:
        raise ValidationError("Folder path must not contain backslashes", details={"folder_path": folder_path})
    normalized = folder_path.strip().strip("/")
    if any(segment == ".." for segment in normalized.split("/")):
        raise ValidationError("Folder path must not contain '..' segments", details={"folder_path": folder_path})
    return normalized


def require_folder_path(folder_path: Optional[str]) -> str:
    normalized = normalize_folder_path(folder_path)
    if not normalized:
        raise ValidationError("Folder path is required")
    return normalized


def construct_file_path(file_name: str, folder_path: Optional[str] = None) -> str:
    folder = normalize_folder_path(folder_path)
    return f"{folder}/{file_name}" if folder else file_name


def generate_storage_name(original_name: str, now_ms: Optional[int] = None) -> str:
    """`<epoch-ms>_<original name>`."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{now_ms}_{original_name}"


def guess_content_type(name: str) -> str:
    content_type, _ = mimetypes.guess_type(name)
    return content_type or "application/octet-stream"


def folder_item(name: str, path: str, created: Optional[str] = None, updated: Optional[str] = None) -> FileListItem:
    return FileListItem(
        name=name,
        size=None,
        content_type=FOLDER_CONTENT_TYPE,
        path=path,
        is_folder=True,
        created=created,
        updated=updated,
    )


class CloudStorageProvider(ABC):
    """
    Abstract base class for cloud storage providers.

    Subclasses set `name` (the registry identifier) and implement the
    `_upload`, `_list`, `_download`, `_delete`, `_delete_folder` hooks, plus
    `_create_folder` when `supports_create_folder` is true.
    """

    name: str = ""
    display_name: str = ""
    supports_create_folder: bool = True

    def __init__(self, config_resolver: Optional[ProviderConfigResolver] = None, session=None):
        """
        Args:
            config_resolver: credential source; defaults to a resolver reading
                fresh settings on every call
            session: optional aiohttp-compatible session (used by tests); when
                omitted a short-lived `aiohttp.ClientSession` is opened per call
        """
        self._resolver = config_resolver if config_resolver is not None else ProviderConfigResolver()
        self._session = session

    # -- configuration -----------------------------------------------------

    def get_config(self) -> Dict[str, Any]:
        return self._resolver.get_config(self.name)

    def validate_configuration(self) -> None:
        """Raise ConfigurationError naming every missing key."""
        self.get_config()

    @abstractmethod
    def get_encryptable_credentials(self) -> Dict[str, Any]:
        """Credential bundle persisted (encrypted) alongside each upload."""

    # -- plumbing ----------------------------------------------------------

    @asynccontextmanager
    async def _http(self):
        if self._session is not None:
            yield self._session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    async def _run(self, operation: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run a provider call, mapping unexpected failures to ProviderError."""
        try:
            return await fn()
        except (ValidationError, NotFoundError, ConfigurationError, ProviderError):
            raise
        except RemoteCallError as exc:
            if exc.status == 404:
                raise NotFoundError(
                    f"Not found on {self.name}",
                    details={"provider": self.name, "operation": operation, "url": exc.url},
                ) from exc
            log("ERROR", f"{operation} failed: {exc}", module="providers", provider=self.name, operation=operation)
            raise ProviderError(self.name, operation, str(exc), details={"status": exc.status}) from exc
        except Exception as exc:
            log("ERROR", f"{operation} failed: {exc}", module="providers", provider=self.name, operation=operation)
            raise ProviderError(self.name, operation, str(exc)) from exc

    async def _delete_each(self, keys: Iterable[str], delete_one: Callable[[str], Awaitable[Any]]) -> List[str]:
        """Delete keys one by one; a failure reports what was already removed."""
        deleted: List[str] = []
        for key in keys:
            try:
                await delete_one(key)
            except Exception as exc:
                raise ProviderError(
                    self.name,
                    "delete folder",
                    f"failed at '{key}' after deleting {len(deleted)} object(s): {exc}",
                    details={"deleted": deleted, "failed_key": key},
                ) from exc
            deleted.append(key)
        return deleted

    # -- public capability set --------------------------------------------

    async def upload_file(
        self,
        content: bytes,
        target_name: str,
        folder_path: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        if not content:
            raise ValidationError("Invalid file data: content is empty")
        if not target_name:
            raise ValidationError("Target file name is required")
        folder = normalize_folder_path(folder_path)
        content_type = content_type or guess_content_type(target_name)
        self.validate_configuration()
        return await self._run(
            "upload file", lambda: self._upload(content, target_name, folder, content_type)
        )

    async def list_files(self, folder_path: Optional[str] = None) -> List[FileListItem]:
        folder = normalize_folder_path(folder_path)
        self.validate_configuration()
        return await self._run("list files", lambda: self._list(folder))

    async def download_file(self, file_id: str, folder_path: Optional[str] = None) -> bytes:
        if not file_id:
            raise ValidationError("File identifier is required")
        folder = normalize_folder_path(folder_path)
        self.validate_configuration()
        return await self._run("download file", lambda: self._download(file_id, folder))

    async def delete_file(self, file_id: str, folder_path: Optional[str] = None) -> None:
        if not file_id:
            raise ValidationError("File identifier is required")
        folder = normalize_folder_path(folder_path)
        self.validate_configuration()
        await self._run("delete file", lambda: self._delete(file_id, folder))
        log("INFO", f"File '{file_id}' deleted", module="providers", provider=self.name)

    async def create_folder(self, folder_path: str) -> None:
        folder = require_folder_path(folder_path)
        if not self.supports_create_folder:
            raise ValidationError(f"Provider {self.name} does not support folder creation")
        self.validate_configuration()
        await self._run("create folder", lambda: self._create_folder(folder))
        log("INFO", f"Folder '{folder}' created", module="providers", provider=self.name)

    async def delete_folder(self, folder_path: str) -> None:
        folder = require_folder_path(folder_path)
        self.validate_configuration()
        await self._run("delete folder", lambda: self._delete_folder(folder))
        log("INFO", f"Folder '{folder}' deleted", module="providers", provider=self.name)

    # -- provider hooks ----------------------------------------------------

    @abstractmethod
    async def _upload(self, content: bytes, target_name: str, folder: str, content_type: str) -> UploadResult:
        ...

    @abstractmethod
    async def _list(self, folder: str) -> List[FileListItem]:
        ...

    @abstractmethod
    async def _download(self, file_id: str, folder: str) -> bytes:
        ...

    @abstractmethod
    async def _delete(self, file_id: str, folder: str) -> None:
        ...

    @abstractmethod
    async def _delete_folder(self, folder: str) -> None:
        ...

    async def _create_folder(self, folder: str) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name}>"
