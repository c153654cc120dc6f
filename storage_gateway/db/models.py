# storage_gateway/db/models.py
"""
SQLAlchemy models for the file catalog.
"""
from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from storage_gateway.db.session import Base


def _uuid() -> str:
    return str(uuid4())


class FileRecord(Base):
    __tablename__ = "file_records"
    id = Column(String(36), primary_key=True, default=_uuid)
    original_name = Column(String, nullable=False, index=True)
    size = Column(Integer, nullable=False)
    mime_type = Column(String, nullable=False, index=True)
    storage_name = Column(String, nullable=False)
    # first successful provider URL
    url = Column(Text, nullable=False)
    folder_path = Column(String, nullable=True, index=True)
    description = Column(Text, nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    download_count = Column(Integer, nullable=False, default=0)
    last_accessed_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tag_rows = relationship(
        "FileRecordTag", cascade="all, delete-orphan", lazy="selectin"
    )
    storage_refs = relationship(
        "CloudStorageRef",
        back_populates="file",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CloudStorageRef.created_at",
    )

    @property
    def tags(self):
        return sorted(row.name for row in self.tag_rows)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "original_name": self.original_name,
            "size": self.size,
            "mime_type": self.mime_type,
            "storage_name": self.storage_name,
            "url": self.url,
            "folder_path": self.folder_path,
            "description": self.description,
            "tags": self.tags,
            "metadata": self.extra_metadata or {},
            "is_public": self.is_public,
            "download_count": self.download_count,
            "last_accessed_at": self.last_accessed_at.isoformat() if self.last_accessed_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "providers": [ref.to_dict() for ref in self.storage_refs],
        }


class FileRecordTag(Base):
    __tablename__ = "file_record_tags"
    __table_args__ = (UniqueConstraint("file_id", "name", name="uq_file_record_tag"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(String(36), ForeignKey("file_records.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False, index=True)


class CloudStorageRef(Base):
    __tablename__ = "cloud_storage_refs"
    id = Column(String(36), primary_key=True, default=_uuid)
    file_id = Column(String(36), ForeignKey("file_records.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String, nullable=False, index=True)
    # name on the provider side; can differ from the record (autorename)
    storage_name = Column(String, nullable=True)
    encrypted_credentials = Column(Text, nullable=True)
    url = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="uploaded")  # uploaded, failed
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    file = relationship("FileRecord", back_populates="storage_refs")

    def to_dict(self) -> dict:
        # credentials never leave the catalog
        return {
            "id": self.id,
            "provider": self.provider,
            "storage_name": self.storage_name,
            "url": self.url,
            "status": self.status,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class FileTag(Base):
    __tablename__ = "file_tags"
    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False, unique=True)
    color = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
