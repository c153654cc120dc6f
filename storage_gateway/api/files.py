# storage_gateway/api/files.py
"""
Catalog endpoints: search, metadata, tags, bulk and multi-provider operations.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import Response

from storage_gateway.api.deps import get_storage_service
from storage_gateway.api.schemas import (
    BulkDeleteDTO,
    MetadataUpdateDTO,
    MultiProviderDeleteDTO,
    TagCreateDTO,
    parse_list,
    parse_metadata,
    read_upload,
)
from storage_gateway.core.results import RetryOperation, SearchCriteria
from storage_gateway.core.storage_service import StorageService

router = APIRouter(prefix="/files", tags=["files"])


@router.get("/search")
async def search_files(
    name: Optional[str] = Query(None),
    type: Optional[str] = Query(None, description="Exact MIME type"),
    tags: Optional[List[str]] = Query(None),
    folder_path: Optional[str] = Query(None),
    is_public: Optional[bool] = Query(None),
    provider: Optional[str] = Query(None),
    page: int = Query(1),
    limit: int = Query(20),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc"),
    service: StorageService = Depends(get_storage_service),
) -> dict:
    criteria = SearchCriteria(
        name=name,
        mime_type=type,
        tags=tags or [],
        folder_path=folder_path,
        is_public=is_public,
        provider=provider,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    result = await service.search(criteria)
    return {"status": "success", "data": result.to_dict()}


@router.get("/tags")
async def list_tags(service: StorageService = Depends(get_storage_service)) -> dict:
    return {"status": "success", "data": await service.list_tags()}


@router.post("/tags", status_code=201)
async def create_tag(dto: TagCreateDTO, service: StorageService = Depends(get_storage_service)) -> dict:
    tag = await service.create_tag(dto.name, color=dto.color, description=dto.description)
    return {"status": "success", "data": tag}


@router.delete("/tags/{tag_id}")
async def delete_tag(tag_id: str, service: StorageService = Depends(get_storage_service)) -> dict:
    await service.delete_tag(tag_id)
    return {"status": "success"}


@router.post("/bulk-upload")
async def bulk_upload(
    files: List[UploadFile] = File(...),
    provider: str = Form(...),
    folder_path: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    tags: Optional[str] = Form(None, description="Comma separated tags applied to every file"),
    metadata: Optional[str] = Form(None, description="JSON object applied to every file"),
    is_public: bool = Form(False),
    service: StorageService = Depends(get_storage_service),
) -> dict:
    uploads = [await read_upload(f) for f in files]
    result = await service.bulk_upload(
        uploads,
        provider,
        folder_path,
        tags=parse_list(tags),
        metadata=parse_metadata(metadata),
        description=description,
        is_public=is_public,
    )
    return {"status": "success", "data": result.to_dict()}


@router.post("/bulk-delete")
async def bulk_delete(dto: BulkDeleteDTO, service: StorageService = Depends(get_storage_service)) -> dict:
    result = await service.bulk_delete(dto.file_ids, dto.provider)
    return {"status": "success", "data": result.to_dict()}


@router.post("/multi-provider-upload")
async def multi_provider_upload(
    file: UploadFile = File(...),
    providers: str = Form(..., description="Comma separated provider names"),
    folder_path: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    metadata: Optional[str] = Form(None),
    is_public: bool = Form(False),
    service: StorageService = Depends(get_storage_service),
) -> dict:
    upload = await read_upload(file)
    result = await service.upload_multi(
        upload,
        parse_list(providers),
        folder_path,
        description=description,
        tags=parse_list(tags),
        metadata=parse_metadata(metadata),
        is_public=is_public,
    )
    return {"status": "success", "data": result.to_dict()}


@router.post("/multi-provider-delete")
async def multi_provider_delete(
    dto: MultiProviderDeleteDTO, service: StorageService = Depends(get_storage_service)
) -> dict:
    result = await service.delete_multi(dto.file_id, dto.providers)
    return {"status": "success", "data": result.to_dict()}


@router.post("/retry-upload")
async def retry_upload(
    file: UploadFile = File(...),
    providers: str = Form(..., description="Comma separated providers whose upload failed"),
    folder_path: Optional[str] = Form(None),
    file_id: Optional[str] = Form(None, description="Catalog record to attach the new copies to"),
    service: StorageService = Depends(get_storage_service),
) -> dict:
    upload = await read_upload(file)
    operations = [
        RetryOperation(provider=p, upload=upload, folder_path=folder_path, file_id=file_id)
        for p in parse_list(providers)
    ]
    results = await service.retry_failed_uploads(operations)
    return {"status": "success", "data": [r.to_dict() for r in results]}


@router.get("/{file_id}")
async def get_file(file_id: str, service: StorageService = Depends(get_storage_service)) -> dict:
    return {"status": "success", "data": await service.get_file(file_id)}


@router.patch("/{file_id}/metadata")
async def update_metadata(
    file_id: str, dto: MetadataUpdateDTO, service: StorageService = Depends(get_storage_service)
) -> dict:
    return {"status": "success", "data": await service.update_metadata(file_id, dto.to_patch())}


@router.get("/{file_id}/download")
async def download_file(file_id: str, service: StorageService = Depends(get_storage_service)) -> Response:
    content, record = await service.download_catalog_file(file_id)
    return Response(
        content=content,
        media_type=record["mime_type"],
        headers={"Content-Disposition": f'attachment; filename="{record["original_name"]}"'},
    )
