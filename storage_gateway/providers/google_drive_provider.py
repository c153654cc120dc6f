# storage_gateway/providers/google_drive_provider.py
"""
Google Drive provider (Drive API v3 over aiohttp).

Drive addresses files by opaque ids, so names are resolved by querying the
parent folder. Folder ids are resolved one path segment at a time; missing
segments are created only by uploads and `create_folder`.
"""
from typing import Any, Dict, List, Optional

from storage_gateway.errors import NotFoundError
from storage_gateway.monitoring.logger import log
from storage_gateway.providers.base import (
    CloudStorageProvider,
    FileListItem,
    UploadResult,
    construct_file_path,
    folder_item,
)
from storage_gateway.providers.http import refresh_access_token, related_body, request

API_URL = "https://www.googleapis.com/drive/v3"
UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"
TOKEN_URL = "https://oauth2.googleapis.com/token"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
ROOT_ID = "root"


def _quote_term(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveProvider(CloudStorageProvider):
    """Google Drive account configured by GOOGLE_DRIVE_* settings."""

    name = "google-drive"
    display_name = "Google Drive"

    def get_encryptable_credentials(self) -> Dict[str, Any]:
        config = self.get_config()
        return {
            "client_id": config["client_id"],
            "client_secret": config["client_secret"],
            "refresh_token": config["refresh_token"],
        }

    async def _headers(self, session, config: Dict[str, Any]) -> Dict[str, str]:
        token = await refresh_access_token(
            session,
            TOKEN_URL,
            client_id=config["client_id"],
            client_secret=config["client_secret"],
            refresh_token=config["refresh_token"],
        )
        return {"Authorization": f"Bearer {token}"}

    async def _query(self, session, headers, q: str, fields: str = "files(id, name)") -> List[Dict[str, Any]]:
        files: List[Dict[str, Any]] = []
        params = {"q": q, "fields": f"nextPageToken, {fields}", "spaces": "drive"}
        while True:
            page = await request(session, "GET", f"{API_URL}/files", headers=headers, params=dict(params))
            files.extend(page.get("files", []))
            token = page.get("nextPageToken")
            if not token:
                return files
            params["pageToken"] = token

    async def _folder_id(self, session, headers, folder: str, create: bool) -> str:
        parent_id = ROOT_ID
        for segment in [s for s in folder.split("/") if s]:
            q = (
                f"name = '{_quote_term(segment)}' and mimeType = '{FOLDER_MIME_TYPE}' "
                f"and '{parent_id}' in parents and trashed = false"
            )
            found = await self._query(session, headers, q)
            if found:
                parent_id = found[0]["id"]
                continue
            if not create:
                raise NotFoundError(f"Folder '{folder}' not found", details={"provider": self.name})
            created = await request(
                session,
                "POST",
                f"{API_URL}/files",
                headers=headers,
                params={"fields": "id"},
                json={"name": segment, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
            )
            parent_id = created["id"]
            log("INFO", f"Created Drive folder '{segment}'", module="google_drive_provider")
        return parent_id

    async def _file_id(self, session, headers, file_name: str, folder: str) -> str:
        folder_id = await self._folder_id(session, headers, folder, create=False)
        q = (
            f"name = '{_quote_term(file_name)}' and '{folder_id}' in parents "
            f"and mimeType != '{FOLDER_MIME_TYPE}' and trashed = false"
        )
        found = await self._query(session, headers, q)
        if not found:
            where = folder or "root"
            raise NotFoundError(f"File '{file_name}' not found in {where}", details={"provider": self.name})
        return found[0]["id"]

    async def _upload(self, content: bytes, target_name: str, folder: str, content_type: str) -> UploadResult:
        config = self.get_config()
        async with self._http() as session:
            headers = await self._headers(session, config)
            folder_id = await self._folder_id(session, headers, folder, create=True)
            created = await request(
                session,
                "POST",
                f"{UPLOAD_URL}/files",
                headers=headers,
                params={"uploadType": "multipart", "fields": "id,webViewLink"},
                data=related_body({"name": target_name, "parents": [folder_id]}, content, content_type),
            )
            file_id = created["id"]
            await request(
                session,
                "POST",
                f"{API_URL}/files/{file_id}/permissions",
                headers=headers,
                json={"role": "reader", "type": "anyone"},
            )
            info = await request(
                session, "GET", f"{API_URL}/files/{file_id}", headers=headers, params={"fields": "webViewLink"}
            )
        log("INFO", f"Uploaded {construct_file_path(target_name, folder)} to Google Drive", module="google_drive_provider")
        return UploadResult(url=info["webViewLink"], storage_name=target_name)

    async def _list(self, folder: str) -> List[FileListItem]:
        config = self.get_config()
        async with self._http() as session:
            headers = await self._headers(session, config)
            folder_id = await self._folder_id(session, headers, folder, create=False)
            files = await self._query(
                session,
                headers,
                f"'{folder_id}' in parents and trashed = false",
                fields="files(id, name, mimeType, size, createdTime, modifiedTime)",
            )
        items = []
        for f in files:
            path = construct_file_path(f["name"], folder)
            if f.get("mimeType") == FOLDER_MIME_TYPE:
                items.append(folder_item(f["name"], path, f.get("createdTime"), f.get("modifiedTime")))
                continue
            size: Optional[Any] = f.get("size")
            items.append(
                FileListItem(
                    name=f["name"],
                    size=int(size) if size is not None else None,
                    content_type=f.get("mimeType") or "application/octet-stream",
                    path=path,
                    created=f.get("createdTime"),
                    updated=f.get("modifiedTime"),
                    original_name=f["name"],
                )
            )
        return items

    async def _download(self, file_id: str, folder: str) -> bytes:
        config = self.get_config()
        async with self._http() as session:
            headers = await self._headers(session, config)
            drive_id = await self._file_id(session, headers, file_id, folder)
            return await request(
                session, "GET", f"{API_URL}/files/{drive_id}", expect="bytes", headers=headers, params={"alt": "media"}
            )

    async def _delete(self, file_id: str, folder: str) -> None:
        config = self.get_config()
        async with self._http() as session:
            headers = await self._headers(session, config)
            drive_id = await self._file_id(session, headers, file_id, folder)
            await request(session, "DELETE", f"{API_URL}/files/{drive_id}", expect="none", headers=headers)

    async def _create_folder(self, folder: str) -> None:
        config = self.get_config()
        async with self._http() as session:
            headers = await self._headers(session, config)
            await self._folder_id(session, headers, folder, create=True)

    async def _delete_folder(self, folder: str) -> None:
        config = self.get_config()
        async with self._http() as session:
            headers = await self._headers(session, config)
            folder_id = await self._folder_id(session, headers, folder, create=False)
            # deleting a Drive folder removes its descendants
            await request(session, "DELETE", f"{API_URL}/files/{folder_id}", expect="none", headers=headers)
