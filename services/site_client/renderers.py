"""
Page renderers: per-content-type list views that rebuild themselves from the
data service whenever a relevant sync signal arrives.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from html import escape
from typing import Callable, List, Optional

from shared.models import ContentType, SyncSignal, normalize_content_type, parse_iso_datetime, record_time
from services.site_client.data_service import ContentSource
from services.site_client.sync_bus import SyncBus

logger = logging.getLogger(__name__)


class RenderState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    RENDERED = "rendered"


def format_date(value) -> str:
    parsed = parse_iso_datetime(value)
    if parsed is None:
        return ""
    return f"{parsed.strftime('%B')} {parsed.day}, {parsed.year}"


def _text(item: dict, field: str, default: str = "") -> str:
    value = item.get(field)
    return escape(str(value)) if value not in (None, "") else escape(default)


class PageRenderer:
    """
    Base renderer: Idle -> Loading -> Rendered, then back to Loading on each
    signal or poll tick. The whole list is rebuilt on every refresh.
    """

    content_type: ContentType = None
    label = "content"
    published_only = True

    def __init__(self, data_service: ContentSource, sync_bus: SyncBus):
        if not isinstance(data_service, ContentSource):
            raise TypeError(
                f"{type(self).__name__} needs a data service with get_all/get_published/get_by_id, "
                f"got {type(data_service).__name__}"
            )
        self.data_service = data_service
        self.sync_bus = sync_bus
        self.state = RenderState.IDLE
        self.items: List[dict] = []
        self.html = ""
        self.render_count = 0
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return f"{type(self).__name__}({self.content_type.value})"

    async def start(self) -> str:
        """Subscribe to sync signals and render for the first time."""
        if self._unsubscribe is None:
            self._unsubscribe = self.sync_bus.subscribe(self.content_type, self._on_signal)
        return await self.refresh()

    async def _on_signal(self, signal: SyncSignal):
        logger.info(f"{self.name}: {signal.action.value} on {signal.content_type}, reloading")
        await self.refresh()

    async def fetch(self) -> List[dict]:
        if self.published_only:
            return await self.data_service.get_published(self.content_type)
        return await self.data_service.get_all(self.content_type)

    async def refresh(self) -> str:
        """Re-fetch, re-sort and rebuild the list."""
        self.state = RenderState.LOADING

        try:
            items = self.arrange(await self.fetch())
            html = self.render_list(items) if items else self.render_empty()
        except Exception as e:
            logger.error(f"Error loading {self.label}: {e}", exc_info=True)
            items = []
            html = f'<div class="error-message">Unable to load {self.label}. Please try again later.</div>'

        self.items = items
        self.html = html
        self.state = RenderState.RENDERED
        self.render_count += 1
        return html

    def arrange(self, items: List[dict]) -> List[dict]:
        return list(items)

    def render_list(self, items: List[dict]) -> str:
        return "\n".join(self.render_item(item) for item in items)

    def render_item(self, item: dict) -> str:
        raise NotImplementedError

    def render_empty(self) -> str:
        return f'<div class="no-content">No {self.label} available at this time.</div>'

    def start_polling(self, interval: float = 60.0) -> asyncio.Task:
        """Refresh every ``interval`` seconds until stopped."""
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll(interval))
        return self._poll_task

    async def _poll(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            await self.refresh()

    async def stop(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None


class BlogListRenderer(PageRenderer):
    """Published posts, newest first."""

    content_type = ContentType.BLOGS
    label = "blog posts"

    def arrange(self, items):
        return sorted(items, key=lambda item: record_time(item, "createdAt"), reverse=True)

    def render_item(self, item):
        content = str(item.get("content") or "")
        excerpt = item.get("summary") or content[:150]
        return (
            f'<article class="blog-post" data-id="{_text(item, "id")}">'
            f'<div class="post-content">'
            f'<h3>{_text(item, "title")}</h3>'
            f'<div class="post-meta">'
            f'<span class="post-author">{_text(item, "author", "Church Staff")}</span>'
            f'<span class="post-date">{escape(format_date(item.get("createdAt")))}</span>'
            f'<span class="post-category">{_text(item, "category", "Blog")}</span>'
            f'</div>'
            f'<p>{escape(excerpt)}</p>'
            f'</div>'
            f'</article>'
        )


class EventListRenderer(PageRenderer):
    """Published events that have not happened yet, soonest first."""

    content_type = ContentType.EVENTS
    label = "events"

    def __init__(self, data_service: ContentSource, sync_bus: SyncBus, clock: Callable[[], datetime] = None):
        super().__init__(data_service, sync_bus)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def arrange(self, items):
        now = self.clock()
        upcoming = [
            (parse_iso_datetime(item.get("date")), item)
            for item in items
        ]
        upcoming = [(date, item) for date, item in upcoming if date is not None and date >= now]
        upcoming.sort(key=lambda pair: pair[0])
        return [item for _, item in upcoming]

    def render_item(self, item):
        date = parse_iso_datetime(item.get("date"))
        return (
            f'<div class="event-card" data-id="{_text(item, "id")}">'
            f'<div class="event-date"><span class="month">{date.strftime("%b").upper()}</span>'
            f'<span class="day">{date.day}</span></div>'
            f'<div class="event-details">'
            f'<h3>{_text(item, "title")}</h3>'
            f'<div class="event-location">{_text(item, "location", "Church Location")}</div>'
            f'<p>{_text(item, "description", "Join us for this special event.")}</p>'
            f'</div>'
            f'</div>'
        )

    def render_empty(self):
        return '<div class="no-events-message">No events uploaded yet. Please check back later.</div>'


class SermonListRenderer(PageRenderer):
    """Published sermons, most recent date first."""

    content_type = ContentType.SERMONS
    label = "sermons"

    def arrange(self, items):
        return sorted(items, key=lambda item: record_time(item, "date"), reverse=True)

    def render_item(self, item):
        media = ""
        if item.get("videoUrl"):
            media = f'<a class="sermon-video" href="{_text(item, "videoUrl")}">Watch</a>'
        elif item.get("audioUrl"):
            media = f'<a class="sermon-audio" href="{_text(item, "audioUrl")}">Listen</a>'

        return (
            f'<div class="sermon-card" data-id="{_text(item, "id")}">'
            f'<h3>{_text(item, "title")}</h3>'
            f'<div class="sermon-meta">'
            f'<span class="sermon-speaker">{_text(item, "speaker")}</span>'
            f'<span class="sermon-date">{escape(format_date(item.get("date")))}</span>'
            f'</div>'
            f'<p>{_text(item, "description")}</p>'
            f'{media}'
            f'</div>'
        )


class AdminTableRenderer(PageRenderer):
    """Admin table rows for one content type, drafts included, newest first."""

    published_only = False

    COLUMNS = {
        ContentType.BLOGS: ("title", "author", "createdAt"),
        ContentType.EVENTS: ("title", "location", "date"),
        ContentType.SERMONS: ("title", "speaker", "date"),
    }

    def __init__(self, data_service: ContentSource, sync_bus: SyncBus, content_type):
        self.content_type = normalize_content_type(content_type)
        self.label = self.content_type.value
        super().__init__(data_service, sync_bus)

    def arrange(self, items):
        date_field = self.COLUMNS[self.content_type][-1]
        return sorted(items, key=lambda item: record_time(item, date_field), reverse=True)

    def render_item(self, item):
        title_field, detail_field, date_field = self.COLUMNS[self.content_type]
        status = _text(item, "status", "draft")
        item_id = _text(item, "id")
        return (
            f'<tr data-id="{item_id}">'
            f'<td>{_text(item, title_field)}</td>'
            f'<td>{_text(item, detail_field)}</td>'
            f'<td>{escape(format_date(item.get(date_field)))}</td>'
            f'<td><span class="status-badge {status}">{status}</span></td>'
            f'<td>'
            f'<button class="btn-icon edit" data-id="{item_id}">Edit</button>'
            f'<button class="btn-icon delete" data-id="{item_id}">Delete</button>'
            f'</td>'
            f'</tr>'
        )

    def render_empty(self):
        return f'<tr><td colspan="5" class="empty-table">No {self.label} found</td></tr>'
