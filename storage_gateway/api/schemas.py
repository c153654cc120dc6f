# storage_gateway/api/schemas.py
"""
Request DTOs and form-field parsing shared by the storage and file routers.
"""
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import UploadFile
from pydantic import BaseModel, Field

from storage_gateway.core.results import MetadataPatch, UploadedFile
from storage_gateway.errors import ValidationError


class FolderDTO(BaseModel):
    folder_path: str


class MetadataUpdateDTO(BaseModel):
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    is_public: Optional[bool] = None
    expires_at: Optional[datetime] = None

    def to_patch(self) -> MetadataPatch:
        return MetadataPatch(
            description=self.description,
            tags=self.tags,
            metadata=self.metadata,
            is_public=self.is_public,
            expires_at=self.expires_at,
        )


class BulkDeleteDTO(BaseModel):
    file_ids: List[str] = Field(min_length=1)
    provider: Optional[str] = None


class MultiProviderDeleteDTO(BaseModel):
    file_id: str
    providers: List[str]


class TagCreateDTO(BaseModel):
    name: str
    color: Optional[str] = None
    description: Optional[str] = None


def parse_list(value: Optional[str]) -> List[str]:
    """Comma separated form value -> list, blanks dropped."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_metadata(value: Optional[str]) -> Dict[str, Any]:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except ValueError:
        raise ValidationError("Metadata must be a JSON object")
    if not isinstance(parsed, dict):
        raise ValidationError("Metadata must be a JSON object")
    return parsed


async def read_upload(file: UploadFile) -> UploadedFile:
    content = await file.read()
    return UploadedFile(content=content, filename=file.filename or "", content_type=file.content_type)
