# storage_gateway/api/storage.py
"""
Per-provider storage endpoints: upload, list, download, delete and folders.
"""
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import Response

from storage_gateway.api.deps import get_storage_service
from storage_gateway.api.schemas import FolderDTO, parse_list, parse_metadata, read_upload
from storage_gateway.core.storage_service import StorageService
from storage_gateway.core.validation import detect_mime_type
from storage_gateway.providers.registry import default_registry

router = APIRouter(prefix="/storage", tags=["storage"])


@router.get("/providers")
async def list_providers() -> dict:
    """Registered providers and their capabilities."""
    return {"status": "success", "data": [default_registry.info(name) for name in default_registry.names()]}


@router.post("/upload/{provider}")
async def upload_file(
    provider: str,
    file: UploadFile = File(...),
    folder_path: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    tags: Optional[str] = Form(None, description="Comma separated tags"),
    metadata: Optional[str] = Form(None, description="JSON object"),
    is_public: bool = Form(False),
    service: StorageService = Depends(get_storage_service),
) -> dict:
    upload = await read_upload(file)
    record = await service.upload_file(
        upload,
        provider,
        folder_path,
        description=description,
        tags=parse_list(tags),
        metadata=parse_metadata(metadata),
        is_public=is_public,
    )
    return {"status": "success", "data": record}


@router.get("/list/{provider}")
async def list_files(
    provider: str,
    folder_path: Optional[str] = Query(None),
    service: StorageService = Depends(get_storage_service),
) -> dict:
    return {"status": "success", "data": await service.list_files(provider, folder_path)}


@router.get("/download/{provider}/{file_id}")
async def download_file(
    provider: str,
    file_id: str,
    folder_path: Optional[str] = Query(None),
    service: StorageService = Depends(get_storage_service),
) -> Response:
    content = await service.download_file(provider, file_id, folder_path)
    return Response(
        content=content,
        media_type=detect_mime_type(file_id),
        headers={"Content-Disposition": f'attachment; filename="{file_id}"'},
    )


@router.delete("/delete/{provider}/{file_id}")
async def delete_file(
    provider: str,
    file_id: str,
    folder_path: Optional[str] = Query(None),
    service: StorageService = Depends(get_storage_service),
) -> dict:
    return {"status": "success", "data": await service.delete_file(provider, file_id, folder_path)}


@router.post("/{provider}/folder")
async def create_folder(
    provider: str,
    dto: FolderDTO,
    service: StorageService = Depends(get_storage_service),
) -> dict:
    return {"status": "success", "data": await service.create_folder(provider, dto.folder_path)}


@router.delete("/{provider}/folder")
async def delete_folder(
    provider: str,
    folder_path: str = Query(...),
    service: StorageService = Depends(get_storage_service),
) -> dict:
    return {"status": "success", "data": await service.delete_folder(provider, folder_path)}
