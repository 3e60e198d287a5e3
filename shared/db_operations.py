"""Database operations for the church site content sync."""

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shared.db_models import Base, ContentItem, StorageEntry
from shared.config import get_database_url

# Keys held in dedicated columns; everything else goes to the JSON payload.
_COLUMN_FIELDS = ("id", "title", "status", "createdAt", "updatedAt")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _split_payload(data: dict) -> dict:
    return {k: v for k, v in data.items() if k not in _COLUMN_FIELDS}


class DatabaseOperations:
    """Handles all database operations for the content API and the local store."""

    def __init__(self, database_url: Optional[str] = None):
        """Initialize database connection."""
        self.database_url = database_url or get_database_url()
        engine_kwargs = {"pool_pre_ping": True}
        if self.database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in self.database_url:
                # One shared connection so every thread sees the same database
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(self.database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    # Content Operations

    def list_content(
        self,
        content_type: str,
        published_only: bool = False,
        status: Optional[str] = None
    ) -> List[dict]:
        """
        List records of one content type in creation order.

        Args:
            content_type: Collection key (blogs, events, sermons)
            published_only: Restrict to records with status 'published'
            status: Restrict to records with this status

        Returns:
            List of record dictionaries
        """
        with self.get_session() as session:
            stmt = select(ContentItem).where(ContentItem.content_type == content_type)
            if published_only:
                stmt = stmt.where(ContentItem.status == 'published')
            if status:
                stmt = stmt.where(ContentItem.status == status)
            stmt = stmt.order_by(ContentItem.created_at.asc(), ContentItem.id.asc())
            result = session.execute(stmt)
            return [item.to_dict() for item in result.scalars().all()]

    def get_content(self, content_type: str, item_id: str) -> Optional[dict]:
        """
        Get a single record by id.

        Returns:
            Record dictionary or None if not found
        """
        with self.get_session() as session:
            item = session.get(ContentItem, (content_type, item_id))
            return item.to_dict() if item else None

    def create_content(self, content_type: str, data: dict) -> dict:
        """
        Create a record with a server-assigned id and timestamps.

        Args:
            content_type: Collection key
            data: Validated record fields (title and status required)

        Returns:
            The created record dictionary
        """
        now = _utcnow()
        with self.get_session() as session:
            item = ContentItem(
                content_type=content_type,
                id=str(uuid.uuid4()),
                title=data["title"],
                status=data.get("status") or "draft",
                payload=_split_payload(data),
                created_at=now,
                updated_at=now,
            )
            session.add(item)
            session.commit()
            session.refresh(item)
            return item.to_dict()

    def update_content(self, content_type: str, item_id: str, data: dict) -> Optional[dict]:
        """
        Merge ``data`` over an existing record and refresh updatedAt.

        Returns:
            The updated record dictionary or None if not found
        """
        with self.get_session() as session:
            item = session.get(ContentItem, (content_type, item_id))

            if not item:
                return None

            if data.get("title") is not None:
                item.title = data["title"]
            if data.get("status") is not None:
                item.status = data["status"]

            payload = dict(item.payload or {})
            payload.update(_split_payload(data))
            item.payload = payload
            item.updated_at = _utcnow()

            session.commit()
            session.refresh(item)
            return item.to_dict()

    def delete_content(self, content_type: str, item_id: str) -> Optional[dict]:
        """
        Delete a record.

        Returns:
            The deleted record dictionary or None if not found
        """
        with self.get_session() as session:
            item = session.get(ContentItem, (content_type, item_id))

            if not item:
                return None

            record = item.to_dict()
            session.delete(item)
            session.commit()
            return record

    # Local Storage Operations

    def get_storage_item(self, key: str) -> Optional[str]:
        """Get a stored value or None if the key is absent."""
        with self.get_session() as session:
            entry = session.get(StorageEntry, key)
            return entry.value if entry else None

    def set_storage_item(self, key: str, value: str) -> None:
        """Insert or replace a stored value."""
        with self.get_session() as session:
            entry = session.get(StorageEntry, key)

            if entry:
                entry.value = value
                entry.updated_at = _utcnow()
            else:
                session.add(StorageEntry(key=key, value=value, updated_at=_utcnow()))

            session.commit()

    def remove_storage_item(self, key: str) -> bool:
        """
        Remove a stored value.

        Returns:
            True if the key existed, False otherwise
        """
        with self.get_session() as session:
            entry = session.get(StorageEntry, key)

            if entry:
                session.delete(entry)
                session.commit()
                return True

            return False

    def storage_items(self) -> Dict[str, str]:
        """All stored key/value pairs."""
        with self.get_session() as session:
            result = session.execute(select(StorageEntry))
            return {entry.key: entry.value for entry in result.scalars().all()}
