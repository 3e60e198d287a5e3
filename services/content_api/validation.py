"""Request validation for content records."""

from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Type

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from shared.models import ContentType


class ContentValidationError(ValueError):
    """Raised when a request body fails validation."""

    def __init__(self, errors: List[dict]):
        super().__init__("Validation error")
        self.errors = errors


def _check_iso_date(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError("Valid date is required")
    return value


IsoDate = Annotated[str, AfterValidator(_check_iso_date)]


class _RecordModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class BlogCreate(_RecordModel):
    """Body for creating a blog post."""
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    summary: str = ""
    image_url: str = ""
    author: str = ""
    category: str = ""
    comments: int = 0
    status: Literal["draft", "published"] = "draft"


class EventCreate(_RecordModel):
    """Body for creating an event."""
    title: str = Field(..., min_length=1)
    date: IsoDate
    location: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    image_url: str = ""
    status: Literal["draft", "published"] = "draft"


class SermonCreate(_RecordModel):
    """Body for creating a sermon."""
    title: str = Field(..., min_length=1)
    speaker: str = Field(..., min_length=1)
    date: IsoDate
    description: str = ""
    video_url: str = ""
    audio_url: str = ""
    thumbnail_url: str = ""
    status: Literal["draft", "published"] = "draft"


class BlogUpdate(_RecordModel):
    # Fields required on create may be omitted but not nulled
    title: str = Field(None, min_length=1)
    content: str = Field(None, min_length=1)
    summary: Optional[str] = None
    image_url: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    comments: Optional[int] = None
    status: Literal["draft", "published"] = None


class EventUpdate(_RecordModel):
    title: str = Field(None, min_length=1)
    date: IsoDate = None
    location: str = Field(None, min_length=1)
    description: str = Field(None, min_length=1)
    image_url: Optional[str] = None
    status: Literal["draft", "published"] = None


class SermonUpdate(_RecordModel):
    title: str = Field(None, min_length=1)
    speaker: str = Field(None, min_length=1)
    date: IsoDate = None
    description: Optional[str] = None
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    status: Literal["draft", "published"] = None


CREATE_MODELS: Dict[ContentType, Type[_RecordModel]] = {
    ContentType.BLOGS: BlogCreate,
    ContentType.EVENTS: EventCreate,
    ContentType.SERMONS: SermonCreate,
}

UPDATE_MODELS: Dict[ContentType, Type[_RecordModel]] = {
    ContentType.BLOGS: BlogUpdate,
    ContentType.EVENTS: EventUpdate,
    ContentType.SERMONS: SermonUpdate,
}


def _field_errors(exc: ValidationError) -> List[dict]:
    errors = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())) or "body"
        message = error.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.append({"field": field, "message": message})
    return errors


def validate_record(content_type: ContentType, body: dict, partial: bool = False) -> dict:
    """
    Validate a create (or partial update) body for ``content_type``.

    Returns:
        Normalized record fields keyed in camelCase. Partial validation only
        returns the fields present in ``body``.

    Raises:
        ContentValidationError: with a list of ``{field, message}`` entries
    """
    if not isinstance(body, dict):
        raise ContentValidationError([{"field": "body", "message": "Body must be a JSON object"}])

    model = (UPDATE_MODELS if partial else CREATE_MODELS)[content_type]
    try:
        validated = model.model_validate(body)
    except ValidationError as exc:
        raise ContentValidationError(_field_errors(exc))

    return validated.model_dump(by_alias=True, exclude_unset=partial)
