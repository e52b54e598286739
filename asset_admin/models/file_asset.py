"""
File asset model for managed uploads.
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import BigInteger, DateTime, Enum, Integer, JSON, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from asset_admin.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PermissionLevel(str, enum.Enum):
    """Access level of a file asset."""
    PUBLIC = "public"
    PRIVATE = "private"
    RESTRICTED = "restricted"


class FileAsset(Base):
    """Metadata record for a file stored under the storage root."""

    __tablename__ = "file_assets"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # File information
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    path: Mapped[str] = mapped_column(Text, unique=True, nullable=False, index=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)

    # Organization
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    tags: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    permission: Mapped[PermissionLevel] = mapped_column(
        Enum(PermissionLevel),
        nullable=False,
        default=PermissionLevel.PUBLIC
    )

    # Descriptive metadata (English and Persian)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    alt_text: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    name_fa: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description_fa: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    alt_text_fa: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    custom_metadata: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    # Uploader is a back-reference only; removing the user keeps the asset
    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)

    # Usage tracking
    access_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_accessed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "mime_type": self.mime_type,
            "size": self.size,
            "path": self.path,
            "url": self.url,
            "category": self.category,
            "tags": list(self.tags or []),
            "permission": self.permission.value if self.permission else None,
            "description": self.description,
            "alt_text": self.alt_text,
            "name_fa": self.name_fa,
            "description_fa": self.description_fa,
            "alt_text_fa": self.alt_text_fa,
            "custom_metadata": dict(self.custom_metadata or {}),
            "uploaded_by": str(self.uploaded_by) if self.uploaded_by else None,
            "access_count": self.access_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<FileAsset(id={self.id}, path='{self.path}', size={self.size})>"
