"""Tests for database operations."""

import pytest

from shared.db_operations import DatabaseOperations


@pytest.fixture
def db_ops():
    """Create a test database operations instance with in-memory SQLite."""
    # Use in-memory SQLite for testing
    db = DatabaseOperations(database_url="sqlite:///:memory:")
    db.create_tables()
    return db


def test_create_and_get_content(db_ops):
    """Test creating and retrieving a blog post."""
    created = db_ops.create_content("blogs", {
        "title": "Sunday Recap",
        "content": "<p>Great service</p>",
        "summary": "Recap",
        "status": "draft",
    })

    assert created["id"]
    assert created["title"] == "Sunday Recap"
    assert created["status"] == "draft"
    assert created["content"] == "<p>Great service</p>"
    assert created["createdAt"].endswith("Z")
    assert created["updatedAt"] == created["createdAt"]

    retrieved = db_ops.get_content("blogs", created["id"])
    assert retrieved == created


def test_get_content_scoped_by_type(db_ops):
    """Test that ids are looked up within their own collection."""
    created = db_ops.create_content("events", {"title": "Picnic", "status": "published"})

    assert db_ops.get_content("events", created["id"]) is not None
    assert db_ops.get_content("sermons", created["id"]) is None


def test_create_ignores_client_supplied_id_and_timestamps(db_ops):
    """Test that the server assigns id and timestamps."""
    created = db_ops.create_content("sermons", {
        "id": "client-id",
        "title": "Faith",
        "createdAt": "1999-01-01T00:00:00Z",
        "speaker": "Pastor John",
    })

    assert created["id"] != "client-id"
    assert created["createdAt"] != "1999-01-01T00:00:00Z"
    assert created["speaker"] == "Pastor John"


def test_list_content_published_only(db_ops):
    """Test published filtering."""
    db_ops.create_content("blogs", {"title": "Draft", "status": "draft"})
    db_ops.create_content("blogs", {"title": "Live", "status": "published"})

    all_posts = db_ops.list_content("blogs")
    published = db_ops.list_content("blogs", published_only=True)

    assert [p["title"] for p in all_posts] == ["Draft", "Live"]
    assert [p["title"] for p in published] == ["Live"]


def test_list_content_by_status(db_ops):
    """Test filtering on an explicit status."""
    db_ops.create_content("sermons", {"title": "Draft", "status": "draft"})
    db_ops.create_content("sermons", {"title": "Live", "status": "published"})

    assert [s["title"] for s in db_ops.list_content("sermons", status="draft")] == ["Draft"]
    assert [s["title"] for s in db_ops.list_content("sermons", status="published")] == ["Live"]


def test_update_content_merges_fields(db_ops):
    """Test updating a record merges fields and refreshes updatedAt."""
    created = db_ops.create_content("events", {
        "title": "Choir Practice",
        "location": "Hall A",
        "status": "draft",
    })

    updated = db_ops.update_content("events", created["id"], {
        "status": "published",
        "location": "Hall B",
    })

    assert updated["title"] == "Choir Practice"
    assert updated["status"] == "published"
    assert updated["location"] == "Hall B"
    assert updated["updatedAt"] >= created["updatedAt"]


def test_update_missing_content(db_ops):
    """Test updating a record that doesn't exist."""
    assert db_ops.update_content("events", "nope", {"title": "x"}) is None


def test_delete_content(db_ops):
    """Test deleting a record."""
    created = db_ops.create_content("sermons", {"title": "Hope"})

    deleted = db_ops.delete_content("sermons", created["id"])
    assert deleted["id"] == created["id"]
    assert db_ops.get_content("sermons", created["id"]) is None

    # Second delete finds nothing
    assert db_ops.delete_content("sermons", created["id"]) is None


def test_storage_item_roundtrip(db_ops):
    """Test setting, replacing and removing local storage entries."""
    assert db_ops.get_storage_item("blogs") is None

    db_ops.set_storage_item("blogs", "[]")
    db_ops.set_storage_item("blogs", '[{"id": "1"}]')

    assert db_ops.get_storage_item("blogs") == '[{"id": "1"}]'
    assert db_ops.storage_items() == {"blogs": '[{"id": "1"}]'}

    assert db_ops.remove_storage_item("blogs") is True
    assert db_ops.remove_storage_item("blogs") is False
    assert db_ops.storage_items() == {}
