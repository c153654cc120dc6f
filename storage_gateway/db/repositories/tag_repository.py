# storage_gateway/db/repositories/tag_repository.py
"""
CRUD operations for the FileTag catalog.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from storage_gateway.db.models import FileTag
from typing import Optional, List

class TagRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, name: str, color: str = None, description: str = None) -> FileTag:
        tag = FileTag(name=name, color=color, description=description)
        self.db.add(tag)
        await self.db.commit()
        await self.db.refresh(tag)
        return tag

    async def get(self, tag_id: str) -> Optional[FileTag]:
        result = await self.db.execute(select(FileTag).where(FileTag.id == tag_id))
        return result.scalar_one_or_none()

    async def get_by_name(self, name: str) -> Optional[FileTag]:
        result = await self.db.execute(select(FileTag).where(FileTag.name == name))
        return result.scalar_one_or_none()

    async def list(self) -> List[FileTag]:
        result = await self.db.execute(select(FileTag).order_by(FileTag.name))
        return result.scalars().all()

    async def delete(self, tag_id: str) -> bool:
        tag = await self.get(tag_id)
        if not tag:
            return False
        await self.db.delete(tag)
        await self.db.commit()
        return True
