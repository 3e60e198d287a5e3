"""Shared data models for the church site content sync."""

import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

ALL_CONTENT = "all"

_BASE36 = string.digits + string.ascii_lowercase


class ContentType(str, Enum):
    """Content collections; the value is the local storage key."""
    BLOGS = "blogs"
    EVENTS = "events"
    SERMONS = "sermons"

    @property
    def api_path(self) -> str:
        """Path segment used by the Remote Content API."""
        return "blog" if self is ContentType.BLOGS else self.value

    @classmethod
    def _missing_(cls, value):
        # Accept the API path segment ("blog") as an alias.
        for member in cls:
            if member.api_path == value:
                return member
        return None


class ContentStatus(str, Enum):
    """Visibility state of a content record."""
    DRAFT = "draft"
    PUBLISHED = "published"


class SyncAction(str, Enum):
    """Mutation carried by a sync signal."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    UNKNOWN = "unknown"  # direct collection change seen via storage event


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with a trailing Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_millis() -> int:
    return int(time.time() * 1000)


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_iso_datetime(value) -> Optional[datetime]:
    """Parse an ISO-8601 date or datetime; naive values are taken as UTC."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def record_time(record: dict, *fields: str) -> datetime:
    """The first parseable timestamp among ``fields``, or the epoch."""
    for name in fields:
        parsed = parse_iso_datetime(record.get(name))
        if parsed is not None:
            return parsed
    return EPOCH


def generate_local_id() -> str:
    """Client-side id: epoch millis plus a 5-char base36 suffix."""
    suffix = "".join(random.choice(_BASE36) for _ in range(5))
    return f"{now_millis()}{suffix}"


def is_published(record: dict) -> bool:
    return record.get("status") == ContentStatus.PUBLISHED.value


@dataclass
class SyncSignal:
    """Notification that a collection changed."""
    content_type: str
    action: SyncAction
    item: Optional[dict] = None
    timestamp: int = field(default_factory=now_millis)

    def matches(self, content_types) -> bool:
        """True if a listener for ``content_types`` should receive this signal."""
        if self.content_type == ALL_CONTENT or ALL_CONTENT in content_types:
            return True
        return self.content_type in content_types

    def to_dict(self) -> dict:
        return {
            "contentType": self.content_type,
            "type": self.content_type,
            "action": self.action.value,
            "item": self.item,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncSignal":
        content_type = data.get("contentType") or data.get("type")
        if not content_type:
            raise ValueError("Sync payload has no content type")
        try:
            action = SyncAction(data.get("action", SyncAction.UNKNOWN.value))
        except ValueError:
            action = SyncAction.UNKNOWN
        timestamp = data.get("timestamp")
        return cls(
            content_type=content_type,
            action=action,
            item=data.get("item"),
            timestamp=int(timestamp) if isinstance(timestamp, (int, float)) else now_millis(),
        )


def normalize_content_type(content_type: Any) -> ContentType:
    """Resolve a ContentType from an enum member, storage key or API path."""
    if isinstance(content_type, ContentType):
        return content_type
    try:
        return ContentType(content_type)
    except ValueError:
        raise ValueError(f"Unknown content type: {content_type!r}") from None
