# storage_gateway/db/repositories/file_repository.py
"""
CRUD and search operations for FileRecord and its CloudStorageRef rows.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from storage_gateway.db.models import CloudStorageRef, FileRecord, FileRecordTag

SORT_COLUMNS = {
    "name": FileRecord.original_name,
    "size": FileRecord.size,
    "type": FileRecord.mime_type,
    "created_at": FileRecord.created_at,
    "updated_at": FileRecord.updated_at,
    "download_count": FileRecord.download_count,
}


def _loaded():
    return select(FileRecord).options(
        selectinload(FileRecord.tag_rows), selectinload(FileRecord.storage_refs)
    ).execution_options(populate_existing=True)


class FileRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        original_name: str,
        size: int,
        mime_type: str,
        storage_name: str,
        url: str,
        refs: Iterable[Dict[str, Any]],
        folder_path: Optional[str] = None,
        description: Optional[str] = None,
        tags: Iterable[str] = (),
        metadata: Optional[Dict[str, Any]] = None,
        is_public: bool = False,
        expires_at: Optional[datetime] = None,
    ) -> FileRecord:
        record = FileRecord(
            original_name=original_name,
            size=size,
            mime_type=mime_type,
            storage_name=storage_name,
            url=url,
            folder_path=folder_path or None,
            description=description,
            extra_metadata=metadata or {},
            is_public=is_public,
            expires_at=expires_at,
        )
        record.tag_rows = [FileRecordTag(name=t) for t in sorted(set(tags))]
        record.storage_refs = [CloudStorageRef(**ref) for ref in refs]
        self.db.add(record)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return await self.get(record.id)

    async def get(self, file_id: str) -> Optional[FileRecord]:
        result = await self.db.execute(_loaded().where(FileRecord.id == file_id))
        return result.scalar_one_or_none()

    async def find_by_storage_name(
        self, provider: str, storage_name: str, folder_path: Optional[str] = None
    ) -> List[FileRecord]:
        stmt = _loaded().where(
            FileRecord.storage_refs.any(
                and_(CloudStorageRef.provider == provider, CloudStorageRef.storage_name == storage_name)
            )
        )
        stmt = stmt.where(FileRecord.folder_path == folder_path) if folder_path else stmt.where(FileRecord.folder_path.is_(None))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_under_folder(self, provider: str, folder_path: str) -> List[FileRecord]:
        stmt = _loaded().where(
            FileRecord.storage_refs.any(CloudStorageRef.provider == provider),
            (FileRecord.folder_path == folder_path) | FileRecord.folder_path.like(f"{folder_path}/%"),
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_expired(self, now: datetime) -> List[FileRecord]:
        result = await self.db.execute(
            _loaded().where(FileRecord.expires_at.is_not(None), FileRecord.expires_at <= now)
        )
        return list(result.scalars().all())

    async def update(self, file_id: str, tags: Optional[Iterable[str]] = None, **fields) -> Optional[FileRecord]:
        record = await self.get(file_id)
        if not record:
            return None
        for key, value in fields.items():
            setattr(record, key, value)
        if tags is not None:
            record.tag_rows = [FileRecordTag(name=t) for t in sorted(set(tags))]
        record.updated_at = datetime.utcnow()
        await self.db.commit()
        return await self.get(file_id)

    async def record_download(self, file_id: str) -> Optional[FileRecord]:
        record = await self.get(file_id)
        if not record:
            return None
        record.download_count = (record.download_count or 0) + 1
        record.last_accessed_at = datetime.utcnow()
        await self.db.commit()
        return await self.get(file_id)

    async def upsert_ref(
        self,
        file_id: str,
        provider: str,
        status: str,
        url: Optional[str] = None,
        error: Optional[str] = None,
        encrypted_credentials: Optional[str] = None,
        storage_name: Optional[str] = None,
    ) -> Optional[CloudStorageRef]:
        record = await self.get(file_id)
        if not record:
            return None
        ref = next((r for r in record.storage_refs if r.provider == provider), None)
        if ref is None:
            ref = CloudStorageRef(provider=provider)
            record.storage_refs.append(ref)
        ref.status = status
        ref.url = url
        ref.error = error
        if encrypted_credentials is not None:
            ref.encrypted_credentials = encrypted_credentials
        if storage_name is not None:
            ref.storage_name = storage_name
        if status == "uploaded" and not record.url and url:
            record.url = url
        await self.db.commit()
        return ref

    async def remove_refs(self, file_id: str, providers: Iterable[str]) -> Optional[FileRecord]:
        """Drop refs of `providers`; the record goes too when none remain.

        Returns the surviving record, or None when it was deleted.
        """
        record = await self.get(file_id)
        if not record:
            return None
        providers = set(providers)
        record.storage_refs = [r for r in record.storage_refs if r.provider not in providers]
        if not record.storage_refs:
            await self.db.delete(record)
            await self.db.commit()
            return None
        uploaded = [r for r in record.storage_refs if r.status == "uploaded" and r.url]
        if uploaded and record.url not in {r.url for r in uploaded}:
            record.url = uploaded[0].url
        await self.db.commit()
        return await self.get(file_id)

    async def delete(self, file_id: str) -> bool:
        record = await self.get(file_id)
        if not record:
            return False
        await self.db.delete(record)
        await self.db.commit()
        return True

    async def search(
        self,
        name: Optional[str] = None,
        mime_type: Optional[str] = None,
        tags: Iterable[str] = (),
        folder_path: Optional[str] = None,
        is_public: Optional[bool] = None,
        provider: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[FileRecord], int]:
        stmt = select(FileRecord)
        if name:
            stmt = stmt.where(func.lower(FileRecord.original_name).contains(name.lower()))
        if mime_type:
            stmt = stmt.where(FileRecord.mime_type == mime_type)
        if folder_path is not None:
            stmt = stmt.where(FileRecord.folder_path == folder_path) if folder_path else stmt.where(FileRecord.folder_path.is_(None))
        if is_public is not None:
            stmt = stmt.where(FileRecord.is_public == is_public)
        if provider:
            stmt = stmt.where(FileRecord.storage_refs.any(CloudStorageRef.provider == provider))
        # every requested tag must be present
        for tag in sorted(set(tags)):
            stmt = stmt.where(FileRecord.tag_rows.any(FileRecordTag.name == tag))

        total = await self.db.scalar(select(func.count()).select_from(stmt.subquery()))

        column = SORT_COLUMNS.get(sort_by, FileRecord.created_at)
        ordering = column.desc() if sort_order == "desc" else column.asc()
        stmt = (
            stmt.options(selectinload(FileRecord.tag_rows), selectinload(FileRecord.storage_refs))
            .order_by(ordering, FileRecord.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), int(total or 0)
