# storage_gateway/providers/dropbox_provider.py
"""
Dropbox provider (HTTP API v2 over aiohttp).

Uses DROPBOX_ACCESS_TOKEN, or mints a short-lived token on every call when
the app key, app secret and refresh token are all configured.
"""
import json
from typing import Any, Dict, List

from storage_gateway.errors import NotFoundError
from storage_gateway.monitoring.logger import log
from storage_gateway.providers.base import (
    CloudStorageProvider,
    FileListItem,
    UploadResult,
    construct_file_path,
    folder_item,
    guess_content_type,
)
from storage_gateway.providers.http import RemoteCallError, request

API_URL = "https://api.dropboxapi.com/2"
CONTENT_URL = "https://content.dropboxapi.com/2"
TOKEN_URL = "https://api.dropboxapi.com/oauth2/token"


def raw_link(url: str) -> str:
    """Turn a shared-link preview URL into a direct content URL."""
    if "dl=0" in url:
        return url.replace("dl=0", "raw=1")
    if "raw=1" in url:
        return url
    return f"{url}{'&' if '?' in url else '?'}raw=1"


def _is_not_found(exc: RemoteCallError) -> bool:
    return exc.status == 409 and "not_found" in exc.body


class DropboxProvider(CloudStorageProvider):
    """Dropbox account configured by DROPBOX_* settings."""

    name = "dropbox"
    display_name = "Dropbox"

    def get_encryptable_credentials(self) -> Dict[str, Any]:
        config = self.get_config()
        credentials = {"access_token": config["access_token"]}
        if self._can_refresh(config):
            credentials.update(
                app_key=config["app_key"],
                app_secret=config["app_secret"],
                refresh_token=config["refresh_token"],
            )
        return credentials

    @staticmethod
    def _can_refresh(config: Dict[str, Any]) -> bool:
        return bool(config.get("app_key") and config.get("app_secret") and config.get("refresh_token"))

    async def _headers(self, session, config: Dict[str, Any]) -> Dict[str, str]:
        token = config["access_token"]
        if self._can_refresh(config):
            payload = await request(
                session,
                "POST",
                TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": config["refresh_token"],
                    "client_id": config["app_key"],
                    "client_secret": config["app_secret"],
                },
            )
            token = payload["access_token"]
        return {"Authorization": f"Bearer {token}"}

    async def _rpc(self, session, headers, endpoint: str, body: Dict[str, Any]) -> Any:
        return await request(session, "POST", f"{API_URL}/{endpoint}", headers=headers, json=body)

    async def _shared_link(self, session, headers, path: str) -> str:
        try:
            result = await self._rpc(session, headers, "sharing/create_shared_link_with_settings", {"path": path})
            return result["url"]
        except RemoteCallError as exc:
            if exc.status != 409 or "shared_link_already_exists" not in exc.body:
                raise
            conflict_body = exc.body
        # reuse the link that already exists
        try:
            return json.loads(conflict_body)["error"]["shared_link_already_exists"]["metadata"]["url"]
        except (ValueError, KeyError, TypeError):
            pass
        links = await self._rpc(session, headers, "sharing/list_shared_links", {"path": path, "direct_only": True})
        if not links.get("links"):
            raise RuntimeError(f"No shared link available for {path}")
        return links["links"][0]["url"]

    async def _upload(self, content: bytes, target_name: str, folder: str, content_type: str) -> UploadResult:
        config = self.get_config()
        path = "/" + construct_file_path(target_name, folder)
        api_arg = {"path": path, "mode": "add", "autorename": True, "mute": False}
        async with self._http() as session:
            headers = await self._headers(session, config)
            result = await request(
                session,
                "POST",
                f"{CONTENT_URL}/files/upload",
                headers={
                    **headers,
                    "Dropbox-API-Arg": json.dumps(api_arg),
                    "Content-Type": "application/octet-stream",
                },
                data=content,
            )
            url = await self._shared_link(session, headers, result.get("path_lower") or path)
        log("INFO", f"Uploaded {result.get('path_display', path)} to Dropbox", module="dropbox_provider")
        # autorename may have changed the stored name
        return UploadResult(url=raw_link(url), storage_name=result.get("name") or target_name)

    def _to_item(self, entry: Dict[str, Any], folder: str) -> FileListItem:
        path = construct_file_path(entry["name"], folder)
        if entry.get(".tag") == "folder":
            return folder_item(entry["name"], path)
        return FileListItem(
            name=entry["name"],
            size=entry.get("size"),
            content_type=guess_content_type(entry["name"]),
            path=path,
            is_folder=False,
            created=entry.get("client_modified"),
            updated=entry.get("server_modified"),
            original_name=entry["name"],
        )

    async def _list(self, folder: str) -> List[FileListItem]:
        config = self.get_config()
        async with self._http() as session:
            headers = await self._headers(session, config)
            try:
                page = await self._rpc(session, headers, "files/list_folder", {"path": f"/{folder}" if folder else ""})
            except RemoteCallError as exc:
                if _is_not_found(exc):
                    raise NotFoundError(f"Folder '{folder}' not found", details={"provider": self.name}) from exc
                raise
            entries = list(page.get("entries", []))
            while page.get("has_more"):
                page = await self._rpc(session, headers, "files/list_folder/continue", {"cursor": page["cursor"]})
                entries.extend(page.get("entries", []))
        return [self._to_item(entry, folder) for entry in entries]

    async def _download(self, file_id: str, folder: str) -> bytes:
        config = self.get_config()
        path = "/" + construct_file_path(file_id, folder)
        async with self._http() as session:
            headers = await self._headers(session, config)
            try:
                return await request(
                    session,
                    "POST",
                    f"{CONTENT_URL}/files/download",
                    expect="bytes",
                    headers={**headers, "Dropbox-API-Arg": json.dumps({"path": path})},
                )
            except RemoteCallError as exc:
                if _is_not_found(exc):
                    raise NotFoundError(f"File '{file_id}' not found", details={"provider": self.name, "path": path}) from exc
                raise

    async def _delete_path(self, path: str, what: str) -> None:
        config = self.get_config()
        async with self._http() as session:
            headers = await self._headers(session, config)
            try:
                await self._rpc(session, headers, "files/delete_v2", {"path": path})
            except RemoteCallError as exc:
                if _is_not_found(exc):
                    raise NotFoundError(f"{what} not found", details={"provider": self.name, "path": path}) from exc
                raise

    async def _delete(self, file_id: str, folder: str) -> None:
        await self._delete_path("/" + construct_file_path(file_id, folder), f"File '{file_id}'")

    async def _create_folder(self, folder: str) -> None:
        config = self.get_config()
        async with self._http() as session:
            headers = await self._headers(session, config)
            try:
                await self._rpc(session, headers, "files/create_folder_v2", {"path": f"/{folder}", "autorename": False})
            except RemoteCallError as exc:
                if exc.status == 409 and "conflict" in exc.body:
                    log("INFO", f"Folder '{folder}' already exists in Dropbox", module="dropbox_provider")
                    return
                raise

    async def _delete_folder(self, folder: str) -> None:
        # delete_v2 removes folders recursively
        await self._delete_path(f"/{folder}", f"Folder '{folder}'")
