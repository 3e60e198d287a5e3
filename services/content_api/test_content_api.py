"""Tests for the Content API service.

Tests cover:
- CRUD per content type with the {success, message, data} envelope
- Admin authentication (401 on missing/invalid API key)
- Published filtering via /public and ?published=true
- Field-level validation errors (400)
- Image upload and delete
- Admin dashboard statistics and recent activity
"""

import itertools
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from services.content_api import main
from services.content_api.media_storage import LocalMediaStorage
from shared import db_operations
from shared.db_operations import DatabaseOperations

API_KEY = "test-admin-key"
AUTH = {"X-API-Key": API_KEY}


@pytest.fixture
def db_ops():
    """In-memory content database."""
    db = DatabaseOperations(database_url="sqlite:///:memory:")
    db.create_tables()
    return db


@pytest.fixture
def storage(tmp_path):
    return LocalMediaStorage(str(tmp_path / "uploads"))


@pytest.fixture
def client(db_ops, storage, monkeypatch):
    """TestClient with database and storage dependencies overridden."""
    monkeypatch.setattr(main, "VALID_API_KEYS", {API_KEY})
    main.app.dependency_overrides[main.get_db_ops] = lambda: db_ops
    main.app.dependency_overrides[main.get_media_storage] = lambda: storage
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def clock(monkeypatch):
    """Advance the database clock one minute per write."""
    ticks = itertools.count()
    start = datetime(2024, 1, 1)
    monkeypatch.setattr(db_operations, "_utcnow", lambda: start + timedelta(minutes=next(ticks)))


def _blog(**overrides):
    body = {"title": "Welcome", "content": "<p>Hello church</p>", "status": "draft"}
    body.update(overrides)
    return body


def _event(**overrides):
    body = {
        "title": "Fellowship Dinner",
        "date": "2024-06-01T18:00:00Z",
        "location": "Main Hall",
        "description": "Bring a dish",
        "status": "published",
    }
    body.update(overrides)
    return body


def _sermon(**overrides):
    body = {"title": "Grace", "speaker": "Pastor Ann", "date": "2024-01-07", "status": "published"}
    body.update(overrides)
    return body


class TestAuthentication:

    def test_list_requires_api_key(self, client):
        response = client.get("/api/blog")

        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "message": "Authentication required. No API key provided."
        }

    def test_invalid_api_key(self, client):
        response = client.post("/api/blog", json=_blog(), headers={"X-API-Key": "wrong"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid API key"

    def test_public_list_needs_no_key(self, client):
        assert client.get("/api/blog/public").status_code == 200
        assert client.get("/api/events?published=true").status_code == 200


class TestContentCrud:

    def test_create_and_get_blog(self, client):
        response = client.post("/api/blog", json=_blog(summary="Intro"), headers=AUTH)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Blog post created successfully"
        created = body["data"]
        assert created["id"]
        assert created["title"] == "Welcome"
        assert created["summary"] == "Intro"
        assert created["createdAt"]

        fetched = client.get(f"/api/blog/{created['id']}", headers=AUTH).json()
        assert fetched["data"] == created

    def test_plural_path_alias(self, client):
        response = client.post("/api/blogs", json=_blog(), headers=AUTH)
        assert response.status_code == 201

        listing = client.get("/api/blog", headers=AUTH).json()["data"]
        assert len(listing) == 1

    def test_unknown_content_type(self, client):
        response = client.get("/api/podcasts", headers=AUTH)
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_get_missing_record(self, client):
        response = client.get("/api/sermons/missing", headers=AUTH)

        assert response.status_code == 404
        assert response.json()["message"] == "Sermon not found"

    def test_partial_update(self, client):
        created = client.post("/api/blog", json=_blog(), headers=AUTH).json()["data"]

        response = client.put(f"/api/blog/{created['id']}", json={"status": "published"}, headers=AUTH)

        assert response.status_code == 200
        updated = response.json()["data"]
        assert updated["status"] == "published"
        assert updated["title"] == "Welcome"
        assert updated["content"] == "<p>Hello church</p>"

    def test_update_missing_record(self, client):
        response = client.put("/api/events/missing", json={"title": "x"}, headers=AUTH)
        assert response.status_code == 404

    def test_delete(self, client):
        created = client.post("/api/events", json=_event(), headers=AUTH).json()["data"]

        response = client.delete(f"/api/events/{created['id']}", headers=AUTH)
        assert response.status_code == 200
        assert response.json()["data"]["id"] == created["id"]

        assert client.get(f"/api/events/{created['id']}", headers=AUTH).status_code == 404
        assert client.delete(f"/api/events/{created['id']}", headers=AUTH).status_code == 404


class TestPublishedFiltering:

    def test_public_excludes_drafts(self, client):
        client.post("/api/blog", json=_blog(title="Draft"), headers=AUTH)
        client.post("/api/blog", json=_blog(title="Live", status="published"), headers=AUTH)

        public = client.get("/api/blog/public").json()["data"]
        query = client.get("/api/blog?published=true").json()["data"]

        assert [p["title"] for p in public] == ["Live"]
        assert [p["title"] for p in query] == ["Live"]

    def test_public_events_sorted_by_date(self, client):
        client.post("/api/events", json=_event(title="Later", date="2024-09-01"), headers=AUTH)
        client.post("/api/events", json=_event(title="Sooner", date="2024-03-01"), headers=AUTH)

        public = client.get("/api/events/public").json()["data"]
        assert [e["title"] for e in public] == ["Sooner", "Later"]

    def test_public_single_record_hides_drafts(self, client):
        draft = client.post("/api/sermons", json={
            "title": "Grace", "speaker": "Pastor Ann", "date": "2024-01-07"
        }, headers=AUTH).json()["data"]

        assert client.get(f"/api/sermons/public/{draft['id']}").status_code == 404

        client.put(f"/api/sermons/{draft['id']}", json={"status": "published"}, headers=AUTH)
        response = client.get(f"/api/sermons/public/{draft['id']}")
        assert response.status_code == 200
        assert response.json()["data"]["speaker"] == "Pastor Ann"

    def test_admin_status_filter(self, client):
        client.post("/api/blog", json=_blog(title="Draft"), headers=AUTH)
        client.post("/api/blog", json=_blog(title="Live", status="published"), headers=AUTH)

        drafts = client.get("/api/blog?status=draft", headers=AUTH)
        published = client.get("/api/blog?status=published", headers=AUTH)

        assert [p["title"] for p in drafts.json()["data"]] == ["Draft"]
        assert [p["title"] for p in published.json()["data"]] == ["Live"]

    def test_status_filter_requires_api_key(self, client):
        assert client.get("/api/blog?status=draft").status_code == 401

    def test_status_filter_rejects_unknown_status(self, client):
        response = client.get("/api/blog?status=archived", headers=AUTH)

        assert response.status_code == 400
        assert response.json()["message"] == "Status must be either draft or published"


class TestAdminDashboard:

    def test_stats(self, client, clock):
        for n in range(6):
            status = "published" if n % 2 else "draft"
            client.post("/api/blog", json=_blog(title=f"Post {n}", status=status), headers=AUTH)
        for n, date in enumerate(["2024-03-01", "2024-05-01", "2024-01-01", "2024-04-01", "2024-06-01", "2024-02-01"]):
            status = "published" if n == 0 else "draft"
            client.post("/api/events", json=_event(title=date, date=date, status=status), headers=AUTH)
        client.post("/api/sermons", json=_sermon(), headers=AUTH)

        response = client.get("/api/admin/stats", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Dashboard statistics retrieved successfully"
        stats = body["data"]
        assert stats["blogCount"] == 6
        assert stats["eventCount"] == 6
        assert stats["sermonCount"] == 1
        assert stats["publishedBlogs"] == 3
        assert stats["publishedEvents"] == 1
        assert stats["publishedSermons"] == 1

        recent = stats["recentActivity"]
        assert [b["title"] for b in recent["recentBlogs"]] == ["Post 5", "Post 4", "Post 3", "Post 2", "Post 1"]
        assert [e["date"] for e in recent["recentEvents"]] == [
            "2024-06-01", "2024-05-01", "2024-04-01", "2024-03-01", "2024-02-01"
        ]
        assert [s["title"] for s in recent["recentSermons"]] == ["Grace"]

    def test_stats_on_empty_database(self, client):
        stats = client.get("/api/admin/stats", headers=AUTH).json()["data"]

        assert stats["blogCount"] == 0
        assert stats["recentActivity"] == {"recentBlogs": [], "recentEvents": [], "recentSermons": []}

    def test_recent_activity(self, client, clock):
        for n in range(4):
            client.post("/api/blog", json=_blog(title=f"B{n}"), headers=AUTH)
        for n in range(4):
            client.post("/api/events", json=_event(title=f"E{n}"), headers=AUTH)
        for n in range(4):
            client.post("/api/sermons", json=_sermon(title=f"S{n}"), headers=AUTH)

        response = client.get("/api/admin/recent-activity", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Recent activity retrieved successfully"
        assert [(item["type"], item["title"]) for item in body["data"]] == [
            ("sermon", "S3"), ("sermon", "S2"), ("sermon", "S1"), ("sermon", "S0"),
            ("event", "E3"), ("event", "E2"), ("event", "E1"), ("event", "E0"),
            ("blog", "B3"), ("blog", "B2"),
        ]

    def test_dashboard_requires_api_key(self, client):
        assert client.get("/api/admin/stats").status_code == 401
        assert client.get("/api/admin/recent-activity").status_code == 401
        assert client.get("/api/admin/stats", headers={"X-API-Key": "wrong"}).status_code == 401


class TestValidation:

    def test_missing_required_fields(self, client):
        response = client.post("/api/events", json={"title": "  "}, headers=AUTH)

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Validation error"
        fields = {error["field"] for error in body["errors"]}
        assert {"title", "date", "location", "description"} <= fields

    def test_invalid_status(self, client):
        response = client.post("/api/blog", json=_blog(status="archived"), headers=AUTH)

        assert response.status_code == 400
        assert any(error["field"] == "status" for error in response.json()["errors"])

    def test_invalid_date(self, client):
        response = client.post("/api/sermons", json={
            "title": "Hope", "speaker": "Pastor Ann", "date": "next sunday"
        }, headers=AUTH)

        assert response.status_code == 400
        errors = response.json()["errors"]
        assert {"field": "date", "message": "Valid date is required"} in errors

    def test_partial_update_validates_present_fields(self, client):
        created = client.post("/api/blog", json=_blog(), headers=AUTH).json()["data"]

        response = client.put(f"/api/blog/{created['id']}", json={"title": ""}, headers=AUTH)
        assert response.status_code == 400

    def test_update_rejects_null_required_fields(self, client):
        blog = client.post("/api/blog", json=_blog(), headers=AUTH).json()["data"]
        sermon = client.post("/api/sermons", json=_sermon(), headers=AUTH).json()["data"]

        response = client.put(f"/api/blog/{blog['id']}", json={"content": None}, headers=AUTH)
        assert response.status_code == 400
        assert any(error["field"] == "content" for error in response.json()["errors"])

        response = client.put(f"/api/sermons/{sermon['id']}", json={"speaker": None}, headers=AUTH)
        assert response.status_code == 400
        assert any(error["field"] == "speaker" for error in response.json()["errors"])

        assert client.get(f"/api/blog/{blog['id']}", headers=AUTH).json()["data"]["content"] == "<p>Hello church</p>"
        assert client.get(f"/api/sermons/{sermon['id']}", headers=AUTH).json()["data"]["speaker"] == "Pastor Ann"

    def test_update_allows_null_optional_fields(self, client):
        created = client.post("/api/blog", json=_blog(summary="Short"), headers=AUTH).json()["data"]

        response = client.put(f"/api/blog/{created['id']}", json={"summary": None}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["data"]["summary"] is None


class TestUploads:

    def test_upload_image(self, client, storage):
        response = client.post(
            "/api/upload/image",
            files={"image": ("photo.PNG", b"\x89PNG fake bytes", "image/png")},
            headers=AUTH
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["originalname"] == "photo.PNG"
        assert data["filename"].endswith(".png")
        assert data["size"] == len(b"\x89PNG fake bytes")
        assert data["path"] == f"/uploads/{data['filename']}"

    def test_upload_rejects_non_images(self, client):
        response = client.post(
            "/api/upload/image",
            files={"image": ("notes.txt", b"hello", "text/plain")},
            headers=AUTH
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Only image files are allowed!"

    def test_upload_requires_auth(self, client):
        response = client.post(
            "/api/upload/image",
            files={"image": ("photo.png", b"data", "image/png")}
        )
        assert response.status_code == 401

    def test_delete_upload(self, client):
        uploaded = client.post(
            "/api/upload/image",
            files={"image": ("photo.jpg", b"jpeg bytes", "image/jpeg")},
            headers=AUTH
        ).json()["data"]

        response = client.delete(f"/api/upload/image/{uploaded['filename']}", headers=AUTH)
        assert response.status_code == 200

        response = client.delete(f"/api/upload/image/{uploaded['filename']}", headers=AUTH)
        assert response.status_code == 404


def test_root(client):
    assert client.get("/").json()["service"] == "Content API"
