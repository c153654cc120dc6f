# storage_gateway/providers/mega_provider.py
"""
Mega provider built on the `mega.py` client.

The client is synchronous, so every operation logs in and runs in a worker
thread. Nodes are addressed by walking the folder tree by name from the
cloud-drive root.
"""
import asyncio
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

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

NODE_FILE = 0
NODE_FOLDER = 1
NODE_ROOT = 2


def _node_name(node: Dict[str, Any]) -> Optional[str]:
    attrs = node.get("a")
    return attrs.get("n") if isinstance(attrs, dict) else None


def _timestamp(ts: Optional[int]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class MegaProvider(CloudStorageProvider):
    """Mega account configured by MEGA_EMAIL / MEGA_PASSWORD."""

    name = "mega"
    display_name = "Mega"

    def get_encryptable_credentials(self) -> Dict[str, Any]:
        config = self.get_config()
        return {"email": config["email"], "password": config["password"]}

    def _login(self, config: Dict[str, Any]):
        from mega import Mega

        log("INFO", "Authenticating with Mega", module="mega_provider")
        return Mega().login(config["email"], config["password"])

    # -- tree helpers (run inside the worker thread) -----------------------

    @staticmethod
    def _children(files: Dict[str, Any], parent: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [(handle, node) for handle, node in files.items() if node.get("p") == parent]

    def _child(self, files, parent: str, name: str, node_type: int) -> Optional[Tuple[str, Dict[str, Any]]]:
        for handle, node in self._children(files, parent):
            if node.get("t") == node_type and _node_name(node) == name:
                return handle, node
        return None

    def _walk(self, client, files, folder: str, create: bool) -> str:
        current = client.get_node_by_type(NODE_ROOT)[0]
        for segment in [s for s in folder.split("/") if s]:
            found = self._child(files, current, segment, NODE_FOLDER)
            if found:
                current = found[0]
                continue
            if not create:
                raise NotFoundError(f"Folder '{folder}' not found", details={"provider": self.name})
            created = client.create_folder(segment, dest=current)
            current = created[segment]
            log("INFO", f"Created Mega folder '{segment}'", module="mega_provider")
        return current

    def _locate_file(self, client, folder: str, file_name: str) -> Tuple[str, Dict[str, Any]]:
        files = client.get_files()
        parent = self._walk(client, files, folder, create=False)
        found = self._child(files, parent, file_name, NODE_FILE)
        if not found:
            raise NotFoundError(
                f"File '{file_name}' not found in {folder or 'root'}", details={"provider": self.name}
            )
        return found

    # -- synchronous operations --------------------------------------------

    def _upload_sync(self, config, content: bytes, target_name: str, folder: str) -> str:
        client = self._login(config)
        dest = self._walk(client, client.get_files(), folder, create=True)
        with tempfile.TemporaryDirectory() as tmp:
            local = Path(tmp) / "upload.bin"
            local.write_bytes(content)
            uploaded = client.upload(str(local), dest=dest, dest_filename=target_name)
        return client.get_upload_link(uploaded)

    def _list_sync(self, config, folder: str) -> List[FileListItem]:
        client = self._login(config)
        files = client.get_files()
        parent = self._walk(client, files, folder, create=False)
        items = []
        for _, node in self._children(files, parent):
            name = _node_name(node)
            if not name:
                continue
            path = construct_file_path(name, folder)
            created = _timestamp(node.get("ts"))
            if node.get("t") == NODE_FOLDER:
                items.append(folder_item(name, path, created))
            elif node.get("t") == NODE_FILE:
                items.append(
                    FileListItem(
                        name=name,
                        size=node.get("s"),
                        content_type=guess_content_type(name),
                        path=path,
                        created=created,
                        original_name=name,
                    )
                )
        return items

    def _download_sync(self, config, file_id: str, folder: str) -> bytes:
        client = self._login(config)
        found = self._locate_file(client, folder, file_id)
        with tempfile.TemporaryDirectory() as tmp:
            path = client.download(found, dest_path=tmp, dest_filename="download.bin")
            return Path(path).read_bytes()

    def _delete_sync(self, config, file_id: str, folder: str) -> None:
        client = self._login(config)
        handle, _ = self._locate_file(client, folder, file_id)
        client.destroy(handle)

    def _create_folder_sync(self, config, folder: str) -> None:
        client = self._login(config)
        self._walk(client, client.get_files(), folder, create=True)

    def _delete_folder_sync(self, config, folder: str) -> None:
        client = self._login(config)
        handle = self._walk(client, client.get_files(), folder, create=False)
        # destroying a folder node removes its subtree
        client.destroy(handle)

    async def _in_executor(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, self.get_config(), *args)

    # -- hooks ---------------------------------------------------------------

    async def _upload(self, content: bytes, target_name: str, folder: str, content_type: str) -> UploadResult:
        link = await self._in_executor(self._upload_sync, content, target_name, folder)
        log("INFO", f"Uploaded {construct_file_path(target_name, folder)} to Mega", module="mega_provider")
        return UploadResult(url=link, storage_name=target_name)

    async def _list(self, folder: str) -> List[FileListItem]:
        return await self._in_executor(self._list_sync, folder)

    async def _download(self, file_id: str, folder: str) -> bytes:
        return await self._in_executor(self._download_sync, file_id, folder)

    async def _delete(self, file_id: str, folder: str) -> None:
        await self._in_executor(self._delete_sync, file_id, folder)

    async def _create_folder(self, folder: str) -> None:
        await self._in_executor(self._create_folder_sync, folder)

    async def _delete_folder(self, folder: str) -> None:
        await self._in_executor(self._delete_folder_sync, folder)
