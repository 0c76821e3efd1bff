import uuid
from datetime import datetime, timezone
from typing import Annotated, Generic, Literal, Optional, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .models import HealthStatus

T = TypeVar("T")

ShortCode = Annotated[str, Field(min_length=3, max_length=20, pattern="^[a-zA-Z0-9]+$")]
Tag = Annotated[str, Field(max_length=50)]
Scope = Literal["read", "write", "admin"]


class APIModel(BaseModel):
    # camelCase on the wire, snake_case in Python; either is accepted on input
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class DataResponse(APIModel, Generic[T]):
    success: bool = True
    data: T


def _require_future(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if value <= datetime.now(timezone.utc):
        raise ValueError("must be in the future")
    return value


FutureDatetime = Annotated[datetime, AfterValidator(_require_future)]

_http_url = TypeAdapter(HttpUrl)


def _require_http_url(value: str) -> str:
    # Validated as a URL but stored exactly as entered
    try:
        _http_url.validate_python(value)
    except PydanticValidationError:
        raise ValueError("must be a valid http or https URL")
    return value


DestinationUrl = Annotated[str, AfterValidator(_require_http_url)]


class LinkCreate(APIModel):
    original_url: DestinationUrl
    short_code: Optional[ShortCode] = None
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    tags: list[Tag] = Field(default_factory=list, max_length=10)
    expires_at: Optional[FutureDatetime] = None
    max_clicks: Optional[int] = Field(None, gt=0)
    password: Optional[str] = Field(None, min_length=3, max_length=100)
    enable_tracking: bool = True
    organization_id: Optional[uuid.UUID] = None


class LinkUpdate(APIModel):
    """Partial update; only fields present in the request body are applied."""

    original_url: Optional[DestinationUrl] = None
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    tags: Optional[list[Tag]] = Field(None, max_length=10)
    expires_at: Optional[FutureDatetime] = None
    max_clicks: Optional[int] = Field(None, gt=0)
    password: Optional[str] = Field(None, min_length=3, max_length=100)
    enable_tracking: Optional[bool] = None
    is_active: Optional[bool] = None


class BulkLinkItem(APIModel):
    # Validated per item so one bad URL does not reject the whole batch
    original_url: str
    short_code: Optional[ShortCode] = None
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    tags: list[Tag] = Field(default_factory=list, max_length=10)


class BulkLinkCreate(APIModel):
    links: list[BulkLinkItem] = Field(min_length=1, max_length=100)


class LinkResponse(APIModel):
    id: uuid.UUID
    short_code: str
    short_url: str
    original_url: str
    title: Optional[str]
    description: Optional[str]
    tags: list[str]
    is_active: bool
    health_status: HealthStatus
    last_health_check: Optional[datetime]
    expires_at: Optional[datetime]
    max_clicks: Optional[int]
    current_clicks: int
    enable_tracking: bool
    has_password: bool
    organization_id: Optional[uuid.UUID]
    created_at: datetime
    updated_at: datetime


class LinkPreview(APIModel):
    short_code: str
    short_url: str
    original_url: str
    title: Optional[str]
    description: Optional[str]
    is_active: bool
    has_password: bool
    expires_at: Optional[datetime]
    max_clicks: Optional[int]
    current_clicks: int
    created_at: datetime


class Pagination(APIModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool


class LinkPage(APIModel):
    success: bool = True
    data: list[LinkResponse]
    pagination: Pagination


class BulkItemResult(APIModel):
    index: int
    success: bool = True
    link: LinkResponse


class BulkItemError(APIModel):
    index: int
    error: str


class BulkSummary(APIModel):
    total: int
    successful: int
    failed: int


class BulkResult(APIModel):
    results: list[BulkItemResult]
    errors: list[BulkItemError]
    summary: BulkSummary


class HealthCheckResult(APIModel):
    status: HealthStatus
    status_code: Optional[int] = None
    response_time: Optional[int] = None
    error: Optional[str] = None
    checked_at: datetime


class HealthCheckRecord(HealthCheckResult):
    id: uuid.UUID
    url: str


class CountBucket(APIModel):
    value: Optional[str]
    count: int


class DailyClicks(APIModel):
    date: str
    clicks: int


class LinkAnalytics(APIModel):
    link_id: uuid.UUID
    start: datetime
    end: datetime
    total_clicks: int
    unique_visitors: int
    clicks_over_time: list[DailyClicks]
    top_countries: list[CountBucket]
    top_browsers: list[CountBucket]
    top_devices: list[CountBucket]
    top_referrers: list[CountBucket]


class ApiTokenCreate(APIModel):
    name: str = Field(min_length=2, max_length=100)
    scopes: list[Scope] = Field(min_length=1)
    expires_at: Optional[FutureDatetime] = None
    organization_id: Optional[uuid.UUID] = None


class ApiTokenResponse(APIModel):
    id: uuid.UUID
    name: str
    scopes: list[str]
    is_active: bool
    organization_id: Optional[uuid.UUID]
    expires_at: Optional[datetime]
    last_used_at: Optional[datetime]
    created_at: datetime


class ApiTokenCreated(ApiTokenResponse):
    token: str
