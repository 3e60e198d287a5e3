"""SQLAlchemy database models for the church site content sync."""

from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, DateTime, JSON, Index
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func


Base = declarative_base()


def _iso(value: datetime) -> str:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ContentItem(Base):
    """Model for content_items table (blogs, events and sermons)."""
    __tablename__ = 'content_items'

    content_type = Column(String(20), primary_key=True)
    id = Column(String(64), primary_key=True)
    title = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False, default='draft')
    payload = Column(JSON, nullable=False, default=dict)  # type-specific fields
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index('idx_content_items_type_status', 'content_type', 'status'),
    )

    def to_dict(self) -> dict:
        """Wire representation: payload fields plus the common columns."""
        record = dict(self.payload or {})
        record.update({
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        })
        return record


class StorageEntry(Base):
    """Model for local_storage table (client-side key/value store)."""
    __tablename__ = 'local_storage'

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
