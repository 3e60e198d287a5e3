"""
Local persistent store: a quota-limited key/value area shared by every open
tab, plus the collection-level adapter the data service writes through.
"""

import json
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from shared.config import get_local_storage_url
from shared.db_operations import DatabaseOperations
from shared.models import ContentType, normalize_content_type, record_time, utc_now_iso
from services.site_client.media import compress_record_media

logger = logging.getLogger(__name__)

COLLECTION_KEYS = tuple(content_type.value for content_type in ContentType)
LAST_SYNC_KEY = "lastSync"
PENDING_SYNC_KEY = "pendingSync"

QUOTA_MESSAGE = "Storage quota exceeded. Please try with a smaller file or clear browser data."


class QuotaExceededError(Exception):
    """Raised by a StorageArea when a write would exceed its quota."""


class LocalStoreError(Exception):
    """A local write could not be persisted."""


class StorageQuotaExceeded(LocalStoreError):
    """A write still did not fit after cleaning up old data."""

    def __init__(self, message: str = QUOTA_MESSAGE):
        super().__init__(message)


@dataclass(frozen=True)
class StorageEvent:
    """Change notification delivered to every tab except the writer."""
    key: str
    old_value: Optional[str]
    new_value: Optional[str]


class StorageArea:
    """
    Key/value storage shared by all tabs of one origin.

    Values are strings. Usage is measured as the total length of keys and
    values; a write that would push usage over ``quota`` is refused.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        quota: Optional[int] = 5 * 1024 * 1024,
        db_ops: Optional[DatabaseOperations] = None
    ):
        self.db_ops = db_ops or DatabaseOperations(database_url or get_local_storage_url())
        self.db_ops.create_tables()
        self.quota = quota
        self._tabs: List["LocalStorage"] = []

    def open_tab(self) -> "LocalStorage":
        tab = LocalStorage(self)
        self._tabs.append(tab)
        return tab

    def close_tab(self, tab: "LocalStorage"):
        if tab in self._tabs:
            self._tabs.remove(tab)

    def used_bytes(self, exclude_key: Optional[str] = None) -> int:
        return sum(
            len(key) + len(value)
            for key, value in self.db_ops.storage_items().items()
            if key != exclude_key
        )

    def get_item(self, key: str) -> Optional[str]:
        return self.db_ops.get_storage_item(key)

    def set_item(self, key: str, value: str, source: Optional["LocalStorage"] = None):
        if not isinstance(value, str):
            raise TypeError("Storage values must be strings")

        if self.quota:
            projected = self.used_bytes(exclude_key=key) + len(key) + len(value)
            if projected > self.quota:
                raise QuotaExceededError(
                    f"Setting '{key}' would use {projected} of {self.quota} bytes"
                )

        old_value = self.db_ops.get_storage_item(key)
        self.db_ops.set_storage_item(key, value)

        if old_value != value:
            self._notify(StorageEvent(key, old_value, value), source)

    def remove_item(self, key: str, source: Optional["LocalStorage"] = None):
        old_value = self.db_ops.get_storage_item(key)
        if self.db_ops.remove_storage_item(key):
            self._notify(StorageEvent(key, old_value, None), source)

    def _notify(self, event: StorageEvent, source: Optional["LocalStorage"]):
        for tab in list(self._tabs):
            if tab is not source:
                tab._dispatch(event)


class LocalStorage:
    """One tab's view of a StorageArea."""

    def __init__(self, area: StorageArea):
        self.area = area
        self._listeners: List[Callable[[StorageEvent], None]] = []

    def get_item(self, key: str) -> Optional[str]:
        return self.area.get_item(key)

    def set_item(self, key: str, value: str):
        self.area.set_item(key, value, source=self)

    def remove_item(self, key: str):
        self.area.remove_item(key, source=self)

    def add_listener(self, callback: Callable[[StorageEvent], None]):
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[StorageEvent], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def close(self):
        self._listeners.clear()
        self.area.close_tab(self)

    def _dispatch(self, event: StorageEvent):
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Storage listener failed for key '{event.key}': {e}", exc_info=True)


def most_recent(items: List[dict], keep: int) -> List[dict]:
    """The ``keep`` newest records by createdAt (or date), in their original order."""
    if len(items) <= keep:
        return list(items)
    ranked = sorted(
        range(len(items)),
        key=lambda i: record_time(items[i], "createdAt", "date"),
        reverse=True
    )
    kept = sorted(ranked[:keep])
    return [items[i] for i in kept]


class LocalStore:
    """Collection-level access to a tab's local storage."""

    def __init__(self, storage: LocalStorage, cleanup_keep: int = 10, image_max_kb: int = 500):
        self.storage = storage
        self.cleanup_keep = cleanup_keep
        self.image_max_kb = image_max_kb

    # Raw access

    def _read_json(self, key: str):
        try:
            raw = self.storage.get_item(key)
        except SQLAlchemyError as e:
            logger.error(f"Error reading '{key}' from local storage: {e}")
            return None

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except ValueError as e:
            logger.error(f"Error parsing '{key}' from local storage: {e}")
            return None

    def safe_set(self, key: str, value: str):
        """
        Write a value, cleaning up old data and retrying once on quota errors.

        Raises:
            StorageQuotaExceeded: If the retry still does not fit
            LocalStoreError: If the underlying storage fails
        """
        try:
            self.storage.set_item(key, value)
            return
        except QuotaExceededError:
            logger.warning("Storage quota exceeded, attempting cleanup...")
        except SQLAlchemyError as e:
            raise LocalStoreError(f"Failed to write '{key}': {e}") from e

        self.cleanup_old_data()

        if key in COLLECTION_KEYS:
            try:
                items = json.loads(value)
            except ValueError:
                items = None
            if isinstance(items, list):
                value = json.dumps(most_recent(items, self.cleanup_keep))

        try:
            self.storage.set_item(key, value)
            logger.info(f"Saved '{key}' after cleanup")
        except QuotaExceededError as e:
            logger.error(f"Still exceeding quota after cleanup for '{key}'")
            raise StorageQuotaExceeded() from e
        except SQLAlchemyError as e:
            raise LocalStoreError(f"Failed to write '{key}': {e}") from e

    def cleanup_old_data(self) -> int:
        """
        Trim each collection and the pending intent log to the most recent
        ``cleanup_keep`` entries.

        Returns:
            Number of entries removed
        """
        removed = 0

        for key in COLLECTION_KEYS + (PENDING_SYNC_KEY,):
            items = self._read_json(key)
            if not isinstance(items, list) or len(items) <= self.cleanup_keep:
                continue

            kept = most_recent(items, self.cleanup_keep)
            try:
                self.storage.set_item(key, json.dumps(kept))
            except (QuotaExceededError, SQLAlchemyError) as e:
                logger.error(f"Cleanup of '{key}' failed: {e}")
                continue

            removed += len(items) - len(kept)
            logger.info(f"Cleaned up {key}: kept {len(kept)} most recent of {len(items)}")

        return removed

    # Collections

    def read_collection(self, content_type) -> List[dict]:
        """All records of a collection; [] if absent or malformed."""
        key = normalize_content_type(content_type).value
        items = self._read_json(key)
        if items is None:
            return []
        if not isinstance(items, list):
            logger.error(f"Local collection '{key}' is not a list, ignoring it")
            return []
        return [item for item in items if isinstance(item, dict)]

    def write_collection(self, content_type, items: List[dict]):
        key = normalize_content_type(content_type).value
        self.safe_set(key, json.dumps(items))

    def find(self, content_type, item_id: str) -> Optional[dict]:
        for item in self.read_collection(content_type):
            if str(item.get("id")) == str(item_id):
                return item
        return None

    def append(self, content_type, record: dict) -> dict:
        record = compress_record_media(record, self.image_max_kb)
        items = self.read_collection(content_type)
        items.append(record)
        self.write_collection(content_type, items)
        return record

    def update(self, content_type, item_id: str, data: dict) -> Optional[dict]:
        """Merge ``data`` into the record with ``item_id``; None if it is absent."""
        items = self.read_collection(content_type)

        for index, item in enumerate(items):
            if str(item.get("id")) == str(item_id):
                changes = compress_record_media(data, self.image_max_kb)
                merged = {**item, **changes, "id": item.get("id"), "updatedAt": utc_now_iso()}
                items[index] = merged
                self.write_collection(content_type, items)
                return merged

        return None

    def remove(self, content_type, item_id: str) -> Optional[dict]:
        """Remove a record; returns it, or None if it was absent."""
        items = self.read_collection(content_type)
        remaining = [item for item in items if str(item.get("id")) != str(item_id)]

        if len(remaining) == len(items):
            return None

        removed = next(item for item in items if str(item.get("id")) == str(item_id))
        self.write_collection(content_type, remaining)
        return removed

    def rekey(self, content_type, old_id: str, new_id: str) -> bool:
        """Give a locally created record the id the server assigned to it."""
        items = self.read_collection(content_type)

        for item in items:
            if str(item.get("id")) == str(old_id):
                item["id"] = new_id
                self.write_collection(content_type, items)
                return True

        return False

    # Sync metadata

    def set_last_sync(self, payload: dict):
        self.safe_set(LAST_SYNC_KEY, json.dumps(payload))

    def get_last_sync(self) -> Optional[dict]:
        payload = self._read_json(LAST_SYNC_KEY)
        return payload if isinstance(payload, dict) else None

    def pending_intents(self) -> List[dict]:
        intents = self._read_json(PENDING_SYNC_KEY)
        if not isinstance(intents, list):
            return []
        return [intent for intent in intents if isinstance(intent, dict)]

    def add_intent(self, intent: dict):
        intents = self.pending_intents()
        intents.append(intent)
        self.write_intents(intents)

    def write_intents(self, intents: List[dict]):
        if intents:
            self.safe_set(PENDING_SYNC_KEY, json.dumps(intents))
            return
        try:
            self.storage.remove_item(PENDING_SYNC_KEY)
        except SQLAlchemyError as e:
            raise LocalStoreError(f"Failed to clear '{PENDING_SYNC_KEY}': {e}") from e
