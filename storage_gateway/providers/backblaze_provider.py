# storage_gateway/providers/backblaze_provider.py
"""
Backblaze B2 provider (native API v2 over aiohttp).

Every operation authorizes the account and looks up the bucket id first.
B2 has a flat key space: folders are emulated with a zero-byte
`.b2_folder_placeholder` object and listings synthesize child folders.
"""
import base64
import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from storage_gateway.errors import NotFoundError
from storage_gateway.monitoring.logger import log
from storage_gateway.providers.base import CloudStorageProvider, FileListItem, UploadResult, construct_file_path
from storage_gateway.providers.folders import ObjectEntry, group_listing
from storage_gateway.providers.http import request

AUTHORIZE_URL = "https://api.backblazeb2.com/b2api/v2/b2_authorize_account"
PLACEHOLDER_NAME = ".b2_folder_placeholder"
PAGE_SIZE = 1000


@dataclass
class B2Account:
    """Authorization of one operation."""
    authorization_token: str
    api_url: str
    download_url: str
    account_id: str
    bucket_id: str
    bucket_name: str


def _timestamp(ms: Optional[int]) -> Optional[str]:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


class BackblazeB2Provider(CloudStorageProvider):
    """Backblaze B2 bucket configured by B2_* settings."""

    name = "backblaze"
    display_name = "Backblaze B2"

    def get_encryptable_credentials(self) -> Dict[str, Any]:
        config = self.get_config()
        return {"key_id": config["key_id"], "application_key": config["application_key"]}

    async def _authorize(self, session, config: Dict[str, Any]) -> B2Account:
        basic = base64.b64encode(f"{config['key_id']}:{config['application_key']}".encode()).decode()
        auth = await request(session, "GET", AUTHORIZE_URL, headers={"Authorization": f"Basic {basic}"})
        buckets = await request(
            session,
            "POST",
            f"{auth['apiUrl']}/b2api/v2/b2_list_buckets",
            headers={"Authorization": auth["authorizationToken"]},
            json={"accountId": auth["accountId"], "bucketName": config["bucket_name"]},
        )
        match = [b for b in buckets.get("buckets", []) if b.get("bucketName") == config["bucket_name"]]
        if not match:
            names = ", ".join(b.get("bucketName", "") for b in buckets.get("buckets", []))
            raise RuntimeError(f"Bucket '{config['bucket_name']}' not found. Available buckets: {names}")
        return B2Account(
            authorization_token=auth["authorizationToken"],
            api_url=auth["apiUrl"],
            download_url=auth["downloadUrl"],
            account_id=auth["accountId"],
            bucket_id=match[0]["bucketId"],
            bucket_name=config["bucket_name"],
        )

    async def _api(self, session, account: B2Account, call: str, body: Dict[str, Any]) -> Any:
        return await request(
            session,
            "POST",
            f"{account.api_url}/b2api/v2/{call}",
            headers={"Authorization": account.authorization_token},
            json=body,
        )

    async def _list_names(self, session, account: B2Account, prefix: str) -> List[Dict[str, Any]]:
        files: List[Dict[str, Any]] = []
        body: Dict[str, Any] = {"bucketId": account.bucket_id, "maxFileCount": PAGE_SIZE}
        if prefix:
            body.update(prefix=prefix, startFileName=prefix)
        while True:
            page = await self._api(session, account, "b2_list_file_names", body)
            files.extend(page.get("files", []))
            next_name = page.get("nextFileName")
            if not next_name:
                return files
            body = {**body, "startFileName": next_name}

    async def _find(self, session, account: B2Account, key: str) -> Optional[Dict[str, Any]]:
        page = await self._api(
            session, account, "b2_list_file_names",
            {"bucketId": account.bucket_id, "startFileName": key, "maxFileCount": 1},
        )
        for f in page.get("files", []):
            if f.get("fileName") == key:
                return f
        return None

    async def _require(self, session, account: B2Account, key: str, display: str) -> Dict[str, Any]:
        info = await self._find(session, account, key)
        if info is None:
            raise NotFoundError(f"File '{display}' not found", details={"provider": self.name, "key": key})
        return info

    async def _put(self, session, account: B2Account, key: str, content: bytes, content_type: str) -> Dict[str, Any]:
        target = await self._api(session, account, "b2_get_upload_url", {"bucketId": account.bucket_id})
        return await request(
            session,
            "POST",
            target["uploadUrl"],
            headers={
                "Authorization": target["authorizationToken"],
                "X-Bz-File-Name": quote(key, safe="/"),
                "Content-Type": content_type,
                "Content-Length": str(len(content)),
                "X-Bz-Content-Sha1": hashlib.sha1(content).hexdigest(),
            },
            data=content,
        )

    async def _upload(self, content: bytes, target_name: str, folder: str, content_type: str) -> UploadResult:
        config = self.get_config()
        key = construct_file_path(target_name, folder)
        async with self._http() as session:
            account = await self._authorize(session, config)
            await self._put(session, account, key, content, content_type)
        log("INFO", f"Uploaded {key} to B2 bucket {account.bucket_name}", module="backblaze_provider")
        return UploadResult(url=f"{account.download_url}/file/{account.bucket_name}/{key}", storage_name=target_name)

    async def _list(self, folder: str) -> List[FileListItem]:
        config = self.get_config()
        async with self._http() as session:
            account = await self._authorize(session, config)
            files = await self._list_names(session, account, f"{folder}/" if folder else "")
        entries = [
            ObjectEntry(
                key=f["fileName"],
                size=f.get("contentLength", f.get("size")),
                content_type=f.get("contentType"),
                created=_timestamp(f.get("uploadTimestamp")),
                updated=_timestamp(f.get("uploadTimestamp")),
            )
            for f in files
        ]
        return group_listing(entries, folder, hidden_names=[PLACEHOLDER_NAME])

    async def _download(self, file_id: str, folder: str) -> bytes:
        config = self.get_config()
        key = construct_file_path(file_id, folder)
        async with self._http() as session:
            account = await self._authorize(session, config)
            info = await self._require(session, account, key, file_id)
            return await request(
                session,
                "GET",
                f"{account.download_url}/b2api/v2/b2_download_file_by_id",
                expect="bytes",
                headers={"Authorization": account.authorization_token},
                params={"fileId": info["fileId"]},
            )

    async def _delete(self, file_id: str, folder: str) -> None:
        config = self.get_config()
        key = construct_file_path(file_id, folder)
        async with self._http() as session:
            account = await self._authorize(session, config)
            info = await self._require(session, account, key, file_id)
            await self._api(
                session, account, "b2_delete_file_version",
                {"fileId": info["fileId"], "fileName": info["fileName"]},
            )

    async def _create_folder(self, folder: str) -> None:
        config = self.get_config()
        key = f"{folder}/{PLACEHOLDER_NAME}"
        async with self._http() as session:
            account = await self._authorize(session, config)
            if await self._find(session, account, key) is not None:
                log("INFO", f"Folder '{folder}' already exists in B2", module="backblaze_provider")
                return
            await self._put(session, account, key, b"", "application/x-directory")

    async def _delete_folder(self, folder: str) -> None:
        config = self.get_config()
        async with self._http() as session:
            account = await self._authorize(session, config)
            prefix = f"{folder}/"
            files = await self._list_names(session, account, prefix)
            by_name = {f["fileName"]: f for f in files if f["fileName"].startswith(prefix)}

            async def delete_one(name: str) -> None:
                await self._api(
                    session, account, "b2_delete_file_version",
                    {"fileId": by_name[name]["fileId"], "fileName": name},
                )

            deleted = await self._delete_each(sorted(by_name), delete_one)
        log("INFO", f"Deleted {len(deleted)} object(s) under {folder}/", module="backblaze_provider")
