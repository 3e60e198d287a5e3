"""Content API - FastAPI application."""

import logging
import sys
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request, status, HTTPException, Header, Depends, File, UploadFile, Body, Query
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.config import get_api_keys, get_upload_config
from shared.db_operations import DatabaseOperations
from shared.models import ContentStatus, ContentType, is_published, normalize_content_type, record_time
from services.content_api.validation import ContentValidationError, validate_record
from services.content_api.media_storage import (
    ALLOWED_EXTENSIONS,
    create_media_storage,
    generate_upload_filename,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

# Global instances
db_ops: Optional[DatabaseOperations] = None
media_storage = None

# Load valid API keys at startup
VALID_API_KEYS = get_api_keys()

UPLOAD_CONFIG = get_upload_config()

LABELS = {
    ContentType.BLOGS: "Blog post",
    ContentType.EVENTS: "Event",
    ContentType.SERMONS: "Sermon",
}

# Singular tags used in the admin activity feed
ACTIVITY_TYPES = {
    ContentType.BLOGS: "blog",
    ContentType.EVENTS: "event",
    ContentType.SERMONS: "sermon",
}

RECENT_PER_TYPE = 5
RECENT_ACTIVITY_LIMIT = 10


def get_db_ops() -> DatabaseOperations:
    """Dependency returning the database operations instance."""
    return db_ops


def get_media_storage():
    """Dependency returning the upload storage backend."""
    return media_storage


def envelope(message: str, data=None) -> dict:
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return body


async def verify_api_key(x_api_key: Optional[str] = Header(None, description="Admin API key")):
    """
    Verify the admin API key from the X-API-Key header.

    Raises:
        HTTPException: 401 if API key is missing or invalid

    Returns:
        str: The validated API key
    """
    if not x_api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. No API key provided.",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if x_api_key not in VALID_API_KEYS:
        logger.warning(f"Invalid API key attempted: {x_api_key[:10]}...")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    return x_api_key


def resolve_content_type(content_path: str) -> ContentType:
    """Map a path segment (blog, blogs, events, sermons) to a ContentType."""
    try:
        return normalize_content_type(content_path)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown content type: {content_path}"
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global db_ops, media_storage

    logger.info("Content API starting up...")

    db_ops = DatabaseOperations()
    db_ops.create_tables()
    logger.info("Database connection initialized")

    media_storage = create_media_storage(UPLOAD_CONFIG)
    logger.info(f"Upload storage initialized: {type(media_storage).__name__}")

    yield

    logger.info("Content API shutting down...")


# Create FastAPI application
app = FastAPI(
    title="Content API",
    description="Blogs, events and sermons for the church website",
    version="0.1.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount(
    "/uploads",
    StaticFiles(directory=UPLOAD_CONFIG["upload_dir"], check_dir=False),
    name="uploads"
)


# Error handling middleware
@app.middleware("http")
async def error_handling_middleware(request: Request, call_next):
    """
    Global error handling middleware.

    Error codes:
    - 400: Bad Request (validation errors, invalid input)
    - 500: Internal Server Error (unexpected errors)
    """
    try:
        response = await call_next(request)
        return response
    except ValueError as exc:
        logger.warning(f"Validation error: {exc}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "message": str(exc)}
        )
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "message": "An unexpected error occurred. Please try again later."
            }
        )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors in the {success, message} envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(ContentValidationError)
async def validation_exception_handler(request: Request, exc: ContentValidationError):
    """Field-level validation failures."""
    logger.warning(f"Validation failed for {request.url.path}: {exc.errors}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": "Validation error", "errors": exc.errors}
    )


# Health check endpoint
@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint."""
    db_healthy = False
    try:
        db_ops.list_content(ContentType.BLOGS.value, published_only=True)
        db_healthy = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")

    return {
        "status": "healthy" if db_healthy else "degraded",
        "service": "content_api",
        "version": "0.1.0",
        "dependencies": {"database": "up" if db_healthy else "down"}
    }


@app.get("/", status_code=status.HTTP_200_OK)
async def root():
    """Root endpoint."""
    return {
        "service": "Content API",
        "version": "0.1.0",
        "status": "running"
    }


# Upload endpoints (registered before the content routes)

@app.post("/api/upload/image", status_code=status.HTTP_200_OK)
async def upload_image(
    image: UploadFile = File(...),
    api_key: str = Depends(verify_api_key),
    storage=Depends(get_media_storage)
):
    """
    Upload a single image and return a path usable as a record's media field.

    Accepts jpg, jpeg, png, gif and webp files up to the configured size limit.
    """
    original_name = image.filename or ""
    if not original_name.lower().endswith(ALLOWED_EXTENSIONS):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only image files are allowed!"
        )

    data = await image.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")

    if len(data) > UPLOAD_CONFIG["max_bytes"]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large. Maximum size is {UPLOAD_CONFIG['max_bytes'] // (1024 * 1024)}MB"
        )

    filename = generate_upload_filename(original_name)
    path = storage.save(data, filename, image.content_type or "application/octet-stream")

    logger.info(f"Uploaded image {original_name} as {filename}")

    return envelope("File uploaded successfully", {
        "filename": filename,
        "originalname": original_name,
        "mimetype": image.content_type,
        "size": len(data),
        "path": path,
    })


@app.delete("/api/upload/image/{filename}", status_code=status.HTTP_200_OK)
async def delete_image(
    filename: str,
    api_key: str = Depends(verify_api_key),
    storage=Depends(get_media_storage)
):
    """Delete a previously uploaded image."""
    if not storage.delete(filename):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    return envelope("File deleted successfully")


# Admin dashboard endpoints

def _newest(items: List[dict], field: str, limit: int) -> List[dict]:
    return sorted(items, key=lambda item: record_time(item, field), reverse=True)[:limit]


@app.get("/api/admin/stats", status_code=status.HTTP_200_OK)
async def dashboard_stats(
    api_key: str = Depends(verify_api_key),
    ops: DatabaseOperations = Depends(get_db_ops)
):
    """Counts per content type and the newest records of each."""
    blogs = ops.list_content(ContentType.BLOGS.value)
    events = ops.list_content(ContentType.EVENTS.value)
    sermons = ops.list_content(ContentType.SERMONS.value)

    stats = {
        "blogCount": len(blogs),
        "eventCount": len(events),
        "sermonCount": len(sermons),
        "publishedBlogs": sum(1 for item in blogs if is_published(item)),
        "publishedEvents": sum(1 for item in events if is_published(item)),
        "publishedSermons": sum(1 for item in sermons if is_published(item)),
        "recentActivity": {
            "recentBlogs": _newest(blogs, "createdAt", RECENT_PER_TYPE),
            "recentEvents": _newest(events, "date", RECENT_PER_TYPE),
            "recentSermons": _newest(sermons, "date", RECENT_PER_TYPE),
        },
    }

    return envelope("Dashboard statistics retrieved successfully", stats)


@app.get("/api/admin/recent-activity", status_code=status.HTTP_200_OK)
async def recent_activity(
    api_key: str = Depends(verify_api_key),
    ops: DatabaseOperations = Depends(get_db_ops)
):
    """The newest records across every content type, tagged with their type."""
    activity = [
        {**item, "type": ACTIVITY_TYPES[content_type]}
        for content_type in ContentType
        for item in ops.list_content(content_type.value)
    ]
    activity.sort(key=lambda item: record_time(item, "createdAt", "date"), reverse=True)

    return envelope("Recent activity retrieved successfully", activity[:RECENT_ACTIVITY_LIMIT])


# Content endpoints

@app.get("/api/{content_path}/public", status_code=status.HTTP_200_OK)
async def list_public_content(content_path: str, ops: DatabaseOperations = Depends(get_db_ops)):
    """Published records of one content type (public)."""
    content_type = resolve_content_type(content_path)
    items = ops.list_content(content_type.value, published_only=True)

    if content_type is ContentType.EVENTS:
        # Upcoming first
        items.sort(key=lambda item: item.get("date") or "")

    return envelope(f"{LABELS[content_type]}s retrieved successfully", items)


@app.get("/api/{content_path}/public/{item_id}", status_code=status.HTTP_200_OK)
async def get_public_content(
    content_path: str,
    item_id: str,
    ops: DatabaseOperations = Depends(get_db_ops)
):
    """A single published record (public)."""
    content_type = resolve_content_type(content_path)
    item = ops.get_content(content_type.value, item_id)

    if not item or item.get("status") != "published":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{LABELS[content_type]} not found"
        )

    return envelope(f"{LABELS[content_type]} retrieved successfully", item)


@app.get("/api/{content_path}", status_code=status.HTTP_200_OK)
async def list_content(
    content_path: str,
    published: bool = False,
    status_filter: Optional[str] = Query(None, alias="status"),
    x_api_key: Optional[str] = Header(None),
    ops: DatabaseOperations = Depends(get_db_ops)
):
    """
    All records of one content type.

    Requires admin authentication unless ``published=true`` is passed, in
    which case only published records are returned. Admins may narrow the
    list with ``status=draft`` or ``status=published``.
    """
    content_type = resolve_content_type(content_path)

    if published:
        return await list_public_content(content_path, ops)

    await verify_api_key(x_api_key)

    if status_filter is not None and status_filter not in {s.value for s in ContentStatus}:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Status must be either draft or published"
        )

    items = ops.list_content(content_type.value, status=status_filter)
    return envelope(f"{LABELS[content_type]}s retrieved successfully", items)


@app.get("/api/{content_path}/{item_id}", status_code=status.HTTP_200_OK)
async def get_content(
    content_path: str,
    item_id: str,
    api_key: str = Depends(verify_api_key),
    ops: DatabaseOperations = Depends(get_db_ops)
):
    """A single record by id (admin)."""
    content_type = resolve_content_type(content_path)
    item = ops.get_content(content_type.value, item_id)

    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{LABELS[content_type]} not found"
        )

    return envelope(f"{LABELS[content_type]} retrieved successfully", item)


@app.post("/api/{content_path}", status_code=status.HTTP_201_CREATED)
async def create_content(
    content_path: str,
    body: dict = Body(...),
    api_key: str = Depends(verify_api_key),
    ops: DatabaseOperations = Depends(get_db_ops)
):
    """Create a record; the server assigns id and timestamps."""
    content_type = resolve_content_type(content_path)
    data = validate_record(content_type, body)

    item = ops.create_content(content_type.value, data)
    logger.info(f"Created {content_type.value} {item['id']}: {item['title']}")

    return envelope(f"{LABELS[content_type]} created successfully", item)


@app.put("/api/{content_path}/{item_id}", status_code=status.HTTP_200_OK)
async def update_content(
    content_path: str,
    item_id: str,
    body: dict = Body(...),
    api_key: str = Depends(verify_api_key),
    ops: DatabaseOperations = Depends(get_db_ops)
):
    """Merge the provided fields over an existing record."""
    content_type = resolve_content_type(content_path)
    data = validate_record(content_type, body, partial=True)

    item = ops.update_content(content_type.value, item_id, data)

    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{LABELS[content_type]} not found"
        )

    logger.info(f"Updated {content_type.value} {item_id}")
    return envelope(f"{LABELS[content_type]} updated successfully", item)


@app.delete("/api/{content_path}/{item_id}", status_code=status.HTTP_200_OK)
async def delete_content(
    content_path: str,
    item_id: str,
    api_key: str = Depends(verify_api_key),
    ops: DatabaseOperations = Depends(get_db_ops)
):
    """Delete a record."""
    content_type = resolve_content_type(content_path)
    item = ops.delete_content(content_type.value, item_id)

    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{LABELS[content_type]} not found"
        )

    logger.info(f"Deleted {content_type.value} {item_id}")
    return envelope(f"{LABELS[content_type]} deleted successfully", item)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("CONTENT_API_PORT", 3001))
    uvicorn.run(app, host="0.0.0.0", port=port)
