# storage_gateway/providers/google_cloud_provider.py
"""
Google Cloud Storage provider (JSON API over aiohttp).

A service-account access token is minted with google-auth on every call.
Folders are emulated with `<folder>/` marker objects; listings synthesize
child folders from the flat key space.
"""
import asyncio
from typing import Any, Dict, List
from urllib.parse import quote

from storage_gateway.monitoring.logger import log
from storage_gateway.providers.base import CloudStorageProvider, FileListItem, UploadResult, construct_file_path
from storage_gateway.providers.folders import ObjectEntry, group_listing
from storage_gateway.providers.http import related_body, request

API_URL = "https://storage.googleapis.com/storage/v1"
UPLOAD_URL = "https://storage.googleapis.com/upload/storage/v1"
PUBLIC_URL = "https://storage.googleapis.com"
SCOPES = ["https://www.googleapis.com/auth/devstorage.read_write"]
DIRECTORY_CONTENT_TYPE = "application/x-directory"


def _fetch_service_account_token(keyfile_path: str) -> str:
    from google.auth.transport.requests import Request
    from google.oauth2 import service_account

    credentials = service_account.Credentials.from_service_account_file(keyfile_path, scopes=SCOPES)
    credentials.refresh(Request())
    return credentials.token


class GoogleCloudStorageProvider(CloudStorageProvider):
    """Google Cloud Storage bucket configured by GOOGLE_CLOUD_* settings."""

    name = "google-cloud"
    display_name = "Google Cloud Storage"

    def get_encryptable_credentials(self) -> Dict[str, Any]:
        config = self.get_config()
        return {
            "project_id": config["project_id"],
            "bucket_name": config["bucket_name"],
            "keyfile_path": config["keyfile_path"],
            "api_key": config.get("api_key"),
        }

    async def _access_token(self, config: Dict[str, Any]) -> str:
        # google-auth refresh is blocking
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _fetch_service_account_token, config["keyfile_path"])

    async def _headers(self, config: Dict[str, Any]) -> Dict[str, str]:
        token = await self._access_token(config)
        return {"Authorization": f"Bearer {token}"}

    def _object_url(self, bucket: str, key: str) -> str:
        return f"{API_URL}/b/{bucket}/o/{quote(key, safe='')}"

    async def _list_objects(self, session, headers, bucket: str, prefix: str) -> List[Dict[str, Any]]:
        objects: List[Dict[str, Any]] = []
        params = {"prefix": prefix} if prefix else {}
        while True:
            page = await request(session, "GET", f"{API_URL}/b/{bucket}/o", headers=headers, params=dict(params))
            objects.extend(page.get("items", []))
            token = page.get("nextPageToken")
            if not token:
                return objects
            params["pageToken"] = token

    async def _upload(self, content: bytes, target_name: str, folder: str, content_type: str) -> UploadResult:
        config = self.get_config()
        bucket = config["bucket_name"]
        key = construct_file_path(target_name, folder)
        metadata = {
            "name": key,
            "contentType": content_type,
            "metadata": {"originalFileName": target_name, "folderPath": folder},
        }
        async with self._http() as session:
            headers = await self._headers(config)
            await request(
                session,
                "POST",
                f"{UPLOAD_URL}/b/{bucket}/o",
                headers=headers,
                params={"uploadType": "multipart"},
                data=related_body(metadata, content, content_type),
            )
        log("INFO", f"Uploaded {key} to bucket {bucket}", module="google_cloud_provider")
        return UploadResult(url=f"{PUBLIC_URL}/{bucket}/{key}", storage_name=target_name)

    async def _list(self, folder: str) -> List[FileListItem]:
        config = self.get_config()
        bucket = config["bucket_name"]
        prefix = f"{folder}/" if folder else ""
        async with self._http() as session:
            objects = await self._list_objects(session, await self._headers(config), bucket, prefix)
        entries = [
            ObjectEntry(
                key=obj["name"],
                size=obj.get("size"),
                content_type=obj.get("contentType"),
                created=obj.get("timeCreated"),
                updated=obj.get("updated"),
                original_name=(obj.get("metadata") or {}).get("originalFileName"),
            )
            for obj in objects
        ]
        return group_listing(entries, folder)

    async def _download(self, file_id: str, folder: str) -> bytes:
        config = self.get_config()
        key = construct_file_path(file_id, folder)
        async with self._http() as session:
            return await request(
                session,
                "GET",
                self._object_url(config["bucket_name"], key),
                expect="bytes",
                headers=await self._headers(config),
                params={"alt": "media"},
            )

    async def _delete(self, file_id: str, folder: str) -> None:
        config = self.get_config()
        key = construct_file_path(file_id, folder)
        async with self._http() as session:
            await request(
                session,
                "DELETE",
                self._object_url(config["bucket_name"], key),
                expect="none",
                headers=await self._headers(config),
            )

    async def _create_folder(self, folder: str) -> None:
        config = self.get_config()
        bucket = config["bucket_name"]
        async with self._http() as session:
            # Re-writing the marker object is harmless, so creation is idempotent
            await request(
                session,
                "POST",
                f"{UPLOAD_URL}/b/{bucket}/o",
                headers={**await self._headers(config), "Content-Type": DIRECTORY_CONTENT_TYPE},
                params={"uploadType": "media", "name": f"{folder}/"},
                data=b"",
            )

    async def _delete_folder(self, folder: str) -> None:
        config = self.get_config()
        bucket = config["bucket_name"]
        async with self._http() as session:
            headers = await self._headers(config)
            prefix = f"{folder}/"
            objects = await self._list_objects(session, headers, bucket, prefix)
            # "a/b/" never matches a sibling such as "a/bc/q"
            keys = [obj["name"] for obj in objects if obj["name"].startswith(prefix)]

            async def delete_one(key: str) -> None:
                await request(session, "DELETE", self._object_url(bucket, key), expect="none", headers=headers)

            deleted = await self._delete_each(keys, delete_one)
        log("INFO", f"Deleted {len(deleted)} object(s) under {folder}/", module="google_cloud_provider")
