from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from .errors import InvalidInputError

DEFAULT_LIMIT = 10
DEFAULT_OFFSET = 0
MAX_PAGE_SIZE = 100
DEFAULT_ORDER_BY = "created_at"
DEFAULT_ORDER_DIRECTION = "DESC"
DEFAULT_ENTRY_STATUS = "draft"
# Largest value an SQLite INTEGER column can bind.
SQLITE_MAX_INTEGER = 2**63 - 1

# Sort keys map to fixed column references; nothing else is ever placed in ORDER BY.
CONTENT_TYPE_ORDER_COLUMNS: dict[str, str] = {
    "id": "id",
    "name": "name",
    "slug": "slug",
    "created_at": "created_at",
    "updated_at": "updated_at",
}
CONTENT_ENTRY_ORDER_COLUMNS: dict[str, str] = {
    "id": "id",
    "created_at": "created_at",
    "updated_at": "updated_at",
    "published_at": "published_at",
    "status": "status",
}
ORDER_DIRECTIONS: dict[str, str] = {"ASC": "ASC", "DESC": "DESC"}


class ErrorBody(BaseModel):
    kind: str
    code: str
    message: str
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ErrorBody


class UserV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    email: str
    created_at: datetime
    updated_at: datetime


class StoredUserV1(UserV1):
    password_hash: str = Field(exclude=True, repr=False)

    def public(self) -> UserV1:
        return UserV1(
            id=self.id,
            email=self.email,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class SessionV1(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    token: str = Field(repr=False)
    user_id: int
    email: str
    expires_at: datetime


class ContentTypeV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    name: str
    slug: str
    description: str
    schema_: str = Field(alias="schema")
    created_at: datetime
    updated_at: datetime


class ContentEntryV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    content_type_id: int
    data: str
    status: str
    created_by: int | None = None
    created_at: datetime
    updated_at: datetime
    published_at: datetime | None = None


class PageInfoV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    totalCount: int = Field(ge=0)
    hasMore: bool
    limit: int = Field(ge=1)
    offset: int = Field(ge=0)


class ContentTypeListResponseV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: list[ContentTypeV1]
    pageInfo: PageInfoV1


class ContentEntryListResponseV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: list[ContentEntryV1]
    pageInfo: PageInfoV1


class AuthPayloadV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    token: str
    user: UserV1


def _utf8_text(value: str) -> str:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValueError("text must be valid UTF-8; unpaired surrogates are not allowed") from exc
    return value


# Argument text is stored or compared in SQLite, which only takes encodable text.
Text = Annotated[str, AfterValidator(_utf8_text)]
# Booleans and numeric strings are not accepted as row ids or page numbers.
RowId = Annotated[int, Field(strict=True, ge=1, le=SQLITE_MAX_INTEGER)]
PageNumber = Annotated[int, Field(strict=True, le=SQLITE_MAX_INTEGER)]


class ListArgumentsV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    limit: PageNumber | None = None
    offset: PageNumber | None = None
    orderBy: Text | None = None
    orderDirection: Text | None = None


class ContentListArgumentsV1(ListArgumentsV1):
    typeSlug: Text = Field(min_length=1)


class IdArgumentsV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: RowId


class SlugArgumentsV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    slug: Text = Field(min_length=1)


class CredentialsArgumentsV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Text = ""
    password: Text = Field(default="", repr=False)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return str(value).strip()


class ContentTypeCreateArgumentsV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Text = ""
    slug: Text = ""
    description: Text = ""
    schema_: Text = Field(default="", alias="schema")

    @field_validator("name", "slug")
    @classmethod
    def strip_text(cls, value: str) -> str:
        return str(value).strip()


class ContentTypeUpdateArgumentsV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: RowId
    name: Text | None = None
    description: Text | None = None
    schema_: Text | None = Field(default=None, alias="schema")


class ContentEntryCreateArgumentsV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    typeSlug: Text = ""
    data: Text = ""
    status: Text | None = None
    publishedAt: datetime | None = None


class ContentEntryUpdateArgumentsV1(BaseModel):
    """Partial entry update.

    Omitted fields are left alone. ``publishedAt`` given explicitly as ``null`` clears
    the publication time; see :meth:`clears_published_at`.
    """

    model_config = ConfigDict(extra="forbid")

    id: RowId
    data: Text | None = None
    status: Text | None = None
    publishedAt: datetime | None = None

    @property
    def clears_published_at(self) -> bool:
        return "publishedAt" in self.model_fields_set and self.publishedAt is None


class EmptyArgumentsV1(BaseModel):
    model_config = ConfigDict(extra="forbid")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_order(
    order_by: str | None,
    order_direction: str | None,
    columns: dict[str, str],
) -> tuple[str, str]:
    column = columns.get(str(order_by or "").strip(), columns[DEFAULT_ORDER_BY])
    direction = ORDER_DIRECTIONS.get(
        str(order_direction or "").strip().upper(),
        ORDER_DIRECTIONS[DEFAULT_ORDER_DIRECTION],
    )
    return column, direction


def _reject_constant(token: str) -> Any:
    raise ValueError(f"'{token}' is not a valid JSON value")


def ensure_json_text(raw: str, *, field: str) -> str:
    """Check that ``raw`` is syntactically valid JSON and return it unchanged.

    The document is kept as opaque text; no shape is enforced beyond well-formedness.
    """
    try:
        json.loads(raw, parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        raise InvalidInputError(
            code="INVALID_JSON",
            message=f"Invalid {field} JSON: {exc.msg} (line {exc.lineno}, column {exc.colno}).",
            details={"field": field},
        ) from exc
    except (ValueError, RecursionError) as exc:
        raise InvalidInputError(
            code="INVALID_JSON",
            message=f"Invalid {field} JSON: {exc}.",
            details={"field": field},
        ) from exc
    return raw


def serialize_dt(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_dt(value: str) -> datetime:
    return datetime.fromisoformat(value)
