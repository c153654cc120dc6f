# storage_gateway/providers/onedrive_provider.py
"""
OneDrive provider for Microsoft Graph operations.

Responsibilities:
- Exchange the configured refresh token for a Graph access token per call
- Address drive items by path (`/me/drive/root:/<path>`)
- Create missing folders along the upload path (conflictBehavior=fail, so a
  folder created concurrently surfaces as 409 and is treated as existing)
- Share uploads through an anonymous view link
"""
from typing import Any, Dict, List
from urllib.parse import quote

from storage_gateway.monitoring.logger import log
from storage_gateway.providers.base import (
    CloudStorageProvider,
    FileListItem,
    UploadResult,
    construct_file_path,
    folder_item,
    guess_content_type,
)
from storage_gateway.providers.http import RemoteCallError, refresh_access_token, request

TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
SCOPE = "https://graph.microsoft.com/Files.ReadWrite.All offline_access"
DEFAULT_GRAPH_URL = "https://graph.microsoft.com/v1.0"


class OneDriveProvider(CloudStorageProvider):
    """OneDrive of the account owning ONEDRIVE_REFRESH_TOKEN."""

    name = "onedrive"
    display_name = "OneDrive"

    def get_encryptable_credentials(self) -> Dict[str, Any]:
        config = self.get_config()
        return {
            "client_id": config["client_id"],
            "client_secret": config["client_secret"],
            "refresh_token": config["refresh_token"],
            "tenant_id": config["tenant_id"],
        }

    def _drive_url(self, config: Dict[str, Any]) -> str:
        return (config.get("graph_base_url") or DEFAULT_GRAPH_URL).rstrip("/") + "/me/drive"

    def _item_url(self, config: Dict[str, Any], path: str) -> str:
        # Graph path addressing: /me/drive/root:/<path>
        return f"{self._drive_url(config)}/root:/{quote(path, safe='/')}"

    async def _headers(self, session, config: Dict[str, Any]) -> Dict[str, str]:
        token = await refresh_access_token(
            session,
            TOKEN_URL.format(tenant_id=config["tenant_id"]),
            client_id=config["client_id"],
            client_secret=config["client_secret"],
            refresh_token=config["refresh_token"],
            scope=SCOPE,
        )
        return {"Authorization": f"Bearer {token}"}

    async def _ensure_folder(self, session, headers, config: Dict[str, Any], folder: str) -> None:
        current = ""
        for segment in [s for s in folder.split("/") if s]:
            path = f"{current}/{segment}" if current else segment
            try:
                await request(session, "GET", self._item_url(config, path), headers=headers)
            except RemoteCallError as exc:
                if exc.status != 404:
                    raise
                parent = f"{self._item_url(config, current)}:/children" if current else f"{self._drive_url(config)}/root/children"
                try:
                    await request(
                        session,
                        "POST",
                        parent,
                        headers=headers,
                        json={"name": segment, "folder": {}, "@microsoft.graph.conflictBehavior": "fail"},
                    )
                    log("INFO", f"Created folder '{path}'", module="onedrive_provider")
                except RemoteCallError as create_exc:
                    if create_exc.status != 409:
                        raise
                    log("INFO", f"Folder '{path}' already exists", module="onedrive_provider")
            current = path

    async def _upload(self, content: bytes, target_name: str, folder: str, content_type: str) -> UploadResult:
        config = self.get_config()
        path = construct_file_path(target_name, folder)
        log("INFO", f"Uploading file to OneDrive: {path}", module="onedrive_provider")
        async with self._http() as session:
            headers = await self._headers(session, config)
            if folder:
                await self._ensure_folder(session, headers, config, folder)
            item = await request(
                session,
                "PUT",
                f"{self._item_url(config, path)}:/content",
                headers={**headers, "Content-Type": "application/octet-stream"},
                data=content,
            )
            share = await request(
                session,
                "POST",
                f"{self._drive_url(config)}/items/{item['id']}/createLink",
                headers=headers,
                json={"type": "view", "scope": "anonymous"},
            )
        log("INFO", f"Upload completed: {path}", module="onedrive_provider")
        return UploadResult(url=share["link"]["webUrl"], storage_name=target_name)

    async def _list(self, folder: str) -> List[FileListItem]:
        config = self.get_config()
        url = f"{self._item_url(config, folder)}:/children" if folder else f"{self._drive_url(config)}/root/children"
        items: List[Dict[str, Any]] = []
        async with self._http() as session:
            headers = await self._headers(session, config)
            while url:
                page = await request(session, "GET", url, headers=headers)
                items.extend(page.get("value", []))
                url = page.get("@odata.nextLink")
        log("INFO", f"Listed {len(items)} items", module="onedrive_provider")

        result = []
        for item in items:
            path = construct_file_path(item["name"], folder)
            if "folder" in item:
                result.append(folder_item(item["name"], path, item.get("createdDateTime"), item.get("lastModifiedDateTime")))
                continue
            result.append(
                FileListItem(
                    name=item["name"],
                    size=item.get("size"),
                    content_type=(item.get("file") or {}).get("mimeType") or guess_content_type(item["name"]),
                    path=path,
                    created=item.get("createdDateTime"),
                    updated=item.get("lastModifiedDateTime"),
                    original_name=item["name"],
                )
            )
        return result

    async def _download(self, file_id: str, folder: str) -> bytes:
        config = self.get_config()
        path = construct_file_path(file_id, folder)
        async with self._http() as session:
            headers = await self._headers(session, config)
            return await request(session, "GET", f"{self._item_url(config, path)}:/content", expect="bytes", headers=headers)

    async def _delete(self, file_id: str, folder: str) -> None:
        config = self.get_config()
        path = construct_file_path(file_id, folder)
        async with self._http() as session:
            headers = await self._headers(session, config)
            await request(session, "DELETE", self._item_url(config, path), expect="none", headers=headers)

    async def _create_folder(self, folder: str) -> None:
        config = self.get_config()
        async with self._http() as session:
            headers = await self._headers(session, config)
            await self._ensure_folder(session, headers, config, folder)

    async def _delete_folder(self, folder: str) -> None:
        config = self.get_config()
        async with self._http() as session:
            headers = await self._headers(session, config)
            # Graph deletes folders recursively
            await request(session, "DELETE", self._item_url(config, folder), expect="none", headers=headers)
