"""Tests for the page renderers and the composition root."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from shared.models import ContentType
from services.site_client.config import DataServiceConfig
from services.site_client.local_store import StorageArea
from services.site_client.main import build_site
from services.site_client.renderers import (
    AdminTableRenderer,
    BlogListRenderer,
    EventListRenderer,
    RenderState,
    SermonListRenderer,
)


@pytest.fixture
def area():
    return StorageArea(database_url="sqlite:///:memory:", quota=None)


@pytest.fixture
def config():
    return DataServiceConfig(use_api=False)


def _source(published=None, everything=None):
    source = Mock()
    source.get_published = AsyncMock(return_value=published or [])
    source.get_all = AsyncMock(return_value=everything or [])
    source.get_by_id = AsyncMock(return_value=None)
    return source


def test_rejects_missing_data_service():
    with pytest.raises(TypeError):
        BlogListRenderer(None, Mock())

    with pytest.raises(TypeError):
        BlogListRenderer(object(), Mock())


@pytest.mark.asyncio
async def test_blog_list_newest_first_and_escaped():
    source = _source(published=[
        {"id": "1", "title": "Older", "createdAt": "2024-01-01T00:00:00Z", "status": "published"},
        {"id": "2", "title": "<script>alert(1)</script>", "createdAt": "2024-02-01T00:00:00Z",
         "status": "published", "summary": "Fresh & new"},
    ])
    renderer = BlogListRenderer(source, Mock())

    assert renderer.state == RenderState.IDLE
    html = await renderer.refresh()

    assert renderer.state == RenderState.RENDERED
    assert [item["id"] for item in renderer.items] == ["2", "1"]
    assert "&lt;script&gt;" in html
    assert "<script>" not in html
    assert "Fresh &amp; new" in html
    assert "February 1, 2024" in html
    source.get_published.assert_awaited_with(ContentType.BLOGS)


@pytest.mark.asyncio
async def test_empty_list_message():
    renderer = SermonListRenderer(_source(), Mock())
    html = await renderer.refresh()
    assert "No sermons available" in html


@pytest.mark.asyncio
async def test_fetch_error_renders_error_message():
    source = _source()
    source.get_published.side_effect = RuntimeError("boom")
    renderer = BlogListRenderer(source, Mock())

    html = await renderer.refresh()

    assert "Unable to load blog posts" in html
    assert renderer.state == RenderState.RENDERED


@pytest.mark.asyncio
async def test_events_upcoming_only_soonest_first():
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)
    source = _source(published=[
        {"id": "past", "title": "Past", "date": "2024-05-01T10:00:00Z"},
        {"id": "later", "title": "Later", "date": "2024-08-01T10:00:00Z"},
        {"id": "soon", "title": "Soon", "date": "2024-06-02"},
        {"id": "undated", "title": "Undated"},
    ])
    renderer = EventListRenderer(source, Mock(), clock=lambda: now)

    html = await renderer.refresh()

    assert [item["id"] for item in renderer.items] == ["soon", "later"]
    assert "JUN" in html
    assert "Church Location" in html


@pytest.mark.asyncio
async def test_sermons_newest_date_first():
    source = _source(published=[
        {"id": "a", "title": "A", "speaker": "Ann", "date": "2024-01-07"},
        {"id": "b", "title": "B", "speaker": "Ben", "date": "2024-03-03", "audioUrl": "/uploads/b.mp3"},
    ])
    renderer = SermonListRenderer(source, Mock())

    html = await renderer.refresh()

    assert [item["id"] for item in renderer.items] == ["b", "a"]
    assert 'href="/uploads/b.mp3"' in html


@pytest.mark.asyncio
async def test_admin_table_reads_all_statuses():
    source = _source(everything=[
        {"id": "1", "title": "Draft", "speaker": "Ann", "date": "2024-01-07", "status": "draft"},
        {"id": "2", "title": "Live", "speaker": "Ben", "date": "2024-02-04", "status": "published"},
    ])
    renderer = AdminTableRenderer(source, Mock(), "sermons")

    html = await renderer.refresh()

    source.get_all.assert_awaited_with(ContentType.SERMONS)
    source.get_published.assert_not_called()
    assert html.count("<tr") == 2
    assert 'class="status-badge draft"' in html


@pytest.mark.asyncio
async def test_renderer_refreshes_on_signal(area, config):
    site = build_site(config, area)
    blogs = site.renderers[0]
    await site.start()
    assert blogs.render_count == 1

    await site.data_service.create("blogs", {"title": "New post", "status": "published"})

    assert blogs.render_count == 2
    assert "New post" in blogs.html

    await site.close()


@pytest.mark.asyncio
async def test_other_tab_renderer_refreshes(area, config):
    writer = build_site(config, area)
    reader = build_site(config, area)
    await reader.start()
    events = next(r for r in reader.renderers if isinstance(r, EventListRenderer))

    await writer.data_service.create("events", {
        "title": "Revival", "date": "2999-01-01T19:00:00Z", "status": "published"
    })
    await reader.sync_bus.drain()

    assert "Revival" in events.html

    await writer.close()
    await reader.close()


@pytest.mark.asyncio
async def test_stop_unsubscribes(area, config):
    site = build_site(config, area)
    blogs = site.renderers[0]
    await blogs.start()
    await blogs.stop()

    await site.data_service.create("blogs", {"title": "Unseen", "status": "published"})

    assert blogs.render_count == 1


@pytest.mark.asyncio
async def test_polling_rerenders():
    source = _source()
    renderer = BlogListRenderer(source, Mock())

    renderer.start_polling(0.01)
    await asyncio.sleep(0.05)
    await renderer.stop()

    assert renderer.render_count >= 2
    assert renderer._poll_task is None


def test_build_site_with_admin_tables(area, config):
    site = build_site(config, area, admin=True)

    admin = [r for r in site.renderers if isinstance(r, AdminTableRenderer)]
    assert {r.content_type for r in admin} == set(ContentType)
    assert len(site.renderers) == 6
