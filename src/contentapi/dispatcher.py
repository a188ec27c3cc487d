from __future__ import annotations

from collections.abc import Mapping
from typing import Any, NamedTuple, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from .content_entry_store import ContentEntryStore
from .content_type_store import ContentTypeStore
from .contract import (
    DEFAULT_ENTRY_STATUS,
    DEFAULT_LIMIT,
    DEFAULT_OFFSET,
    MAX_PAGE_SIZE,
    AuthPayloadV1,
    ContentEntryCreateArgumentsV1,
    ContentEntryListResponseV1,
    ContentEntryUpdateArgumentsV1,
    ContentEntryV1,
    ContentListArgumentsV1,
    ContentTypeCreateArgumentsV1,
    ContentTypeListResponseV1,
    ContentTypeUpdateArgumentsV1,
    ContentTypeV1,
    CredentialsArgumentsV1,
    EmptyArgumentsV1,
    IdArgumentsV1,
    ListArgumentsV1,
    PageInfoV1,
    SessionV1,
    SlugArgumentsV1,
    UserV1,
    ensure_json_text,
)
from .errors import (
    ConflictError,
    ContentApiError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    UnauthorizedError,
)
from .session_store import SessionStore
from .user_store import UserStore

logger = structlog.get_logger(__name__)

ArgsT = TypeVar("ArgsT", bound=BaseModel)

# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72


class _Operation(NamedTuple):
    handler: str
    kind: str


OPERATIONS: dict[str, _Operation] = {
    "contentTypes": _Operation("list_content_types", "query"),
    "contentType": _Operation("get_content_type", "query"),
    "contentTypeBySlug": _Operation("get_content_type_by_slug", "query"),
    "content": _Operation("list_content", "query"),
    "contentEntry": _Operation("get_content_entry", "query"),
    "register": _Operation("register", "auth"),
    "login": _Operation("login", "auth"),
    "logout": _Operation("logout", "mutation"),
    "createContentType": _Operation("create_content_type", "mutation"),
    "updateContentType": _Operation("update_content_type", "mutation"),
    "deleteContentType": _Operation("delete_content_type", "mutation"),
    "createContent": _Operation("create_content", "mutation"),
    "updateContent": _Operation("update_content", "mutation"),
    "deleteContent": _Operation("delete_content", "mutation"),
}


class OperationDispatcher:
    """Resolves a named operation and its arguments into a store call.

    Every handler takes the raw argument mapping plus the acting session (or ``None``)
    and an optional monotonic deadline that is handed to each store call. Handlers
    return pydantic records, or ``True`` for deletes and logout.
    """

    def __init__(
        self,
        *,
        users: UserStore,
        content_types: ContentTypeStore,
        content_entries: ContentEntryStore,
        sessions: SessionStore,
        require_auth: bool = True,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self._users = users
        self._content_types = content_types
        self._content_entries = content_entries
        self._sessions = sessions
        self._require_auth = require_auth
        self._max_page_size = max(1, max_page_size)

    @property
    def operations(self) -> list[str]:
        return sorted(OPERATIONS)

    def resolve_session(self, token: str | None) -> SessionV1 | None:
        if not token:
            return None
        return self._sessions.get_session(token)

    def dispatch(
        self,
        operation: str,
        arguments: Mapping[str, Any] | None = None,
        *,
        token: str | None = None,
        deadline: float | None = None,
    ) -> Any:
        entry = OPERATIONS.get(operation)
        if entry is None:
            raise InvalidInputError(
                code="UNKNOWN_OPERATION",
                message=f"Unknown operation '{operation}'.",
                details={"operations": self.operations},
            )

        session = self.resolve_session(token)
        handler = getattr(self, entry.handler)
        try:
            return handler(arguments or {}, session=session, deadline=deadline)
        except ContentApiError as exc:
            logger.info(
                "operation.failed",
                operation=operation,
                kind=exc.kind,
                code=exc.code,
                user_id=session.user_id if session is not None else None,
            )
            raise

    # Queries

    def list_content_types(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> ContentTypeListResponseV1:
        args = self._parse(ListArgumentsV1, arguments)
        limit, offset = self._page_window(args)
        items, total = self._content_types.list(
            limit,
            offset,
            args.orderBy,
            args.orderDirection,
            deadline=deadline,
        )
        return ContentTypeListResponseV1(
            items=items,
            pageInfo=self._page_info(total=total, returned=len(items), limit=limit, offset=offset),
        )

    def get_content_type(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> ContentTypeV1:
        args = self._parse(IdArgumentsV1, arguments)
        return self._content_types.get(args.id, deadline=deadline)

    def get_content_type_by_slug(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> ContentTypeV1:
        args = self._parse(SlugArgumentsV1, arguments)
        return self._content_types.get_by_slug(args.slug, deadline=deadline)

    def list_content(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> ContentEntryListResponseV1:
        args = self._parse(ContentListArgumentsV1, arguments)
        limit, offset = self._page_window(args)
        content_type = self._content_types.get_by_slug(args.typeSlug, deadline=deadline)
        items, total = self._content_entries.list(
            content_type.id,
            limit,
            offset,
            args.orderBy,
            args.orderDirection,
            deadline=deadline,
        )
        return ContentEntryListResponseV1(
            items=items,
            pageInfo=self._page_info(total=total, returned=len(items), limit=limit, offset=offset),
        )

    def get_content_entry(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> ContentEntryV1:
        args = self._parse(IdArgumentsV1, arguments)
        return self._content_entries.get(args.id, deadline=deadline)

    # Authentication

    def register(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> UserV1:
        if self._users.count_users(deadline=deadline) >= 1:
            raise self._registration_closed()

        args = self._parse(CredentialsArgumentsV1, arguments)
        if not args.email or not args.password:
            raise InvalidInputError(
                code="MISSING_ARGUMENT",
                message="email and password are required.",
            )
        if len(args.password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise InvalidInputError(
                code="PASSWORD_TOO_LONG",
                message=f"password must be at most {MAX_PASSWORD_BYTES} bytes.",
            )

        try:
            user = self._users.create_user(args.email, args.password, deadline=deadline)
        except ConflictError as exc:
            if exc.code == "REGISTRATION_CLOSED":
                raise self._registration_closed() from exc
            raise
        logger.info("auth.registered", user_id=user.id)
        return user

    def login(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> AuthPayloadV1:
        args = self._parse(CredentialsArgumentsV1, arguments)
        try:
            user = self._users.get_user_by_email(args.email, deadline=deadline)
        except NotFoundError:
            user = None

        if user is None or not self._users.check_password(user, args.password):
            logger.info("auth.login_failed")
            raise UnauthorizedError(code="INVALID_CREDENTIALS", message="Invalid credentials.")

        token = self._sessions.create_session(user.id, user.email)
        logger.info("auth.logged_in", user_id=user.id)
        return AuthPayloadV1(token=token, user=user.public())

    def logout(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> bool:
        self._parse(EmptyArgumentsV1, arguments)
        if session is None:
            raise self._authentication_required()
        self._sessions.delete_session(session.token)
        return True

    # Mutations

    def create_content_type(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> ContentTypeV1:
        self._check_session(session)
        args = self._parse(ContentTypeCreateArgumentsV1, arguments)
        if not args.name or not args.slug or not args.schema_:
            raise InvalidInputError(
                code="MISSING_ARGUMENT",
                message="name, slug, and schema are required.",
            )
        ensure_json_text(args.schema_, field="schema")
        return self._content_types.create(
            args.name,
            args.slug,
            args.description,
            args.schema_,
            deadline=deadline,
        )

    def update_content_type(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> ContentTypeV1:
        self._check_session(session)
        args = self._parse(ContentTypeUpdateArgumentsV1, arguments)
        name = args.name.strip() if args.name else None
        schema = args.schema_ or None
        if schema is not None:
            ensure_json_text(schema, field="schema")

        self._content_types.update(
            args.id,
            name=name or None,
            description=args.description,
            schema=schema,
            deadline=deadline,
        )
        return self._content_types.get(args.id, deadline=deadline)

    def delete_content_type(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> bool:
        self._check_session(session)
        args = self._parse(IdArgumentsV1, arguments)
        self._content_types.delete(args.id, deadline=deadline)
        return True

    def create_content(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> ContentEntryV1:
        self._check_session(session)
        args = self._parse(ContentEntryCreateArgumentsV1, arguments)
        if not args.typeSlug or not args.data:
            raise InvalidInputError(
                code="MISSING_ARGUMENT",
                message="typeSlug and data are required.",
            )
        ensure_json_text(args.data, field="data")

        content_type = self._content_types.get_by_slug(args.typeSlug, deadline=deadline)
        return self._content_entries.create(
            content_type.id,
            args.data,
            args.status or DEFAULT_ENTRY_STATUS,
            session.user_id if session is not None else None,
            args.publishedAt,
            deadline=deadline,
        )

    def update_content(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> ContentEntryV1:
        self._check_session(session)
        args = self._parse(ContentEntryUpdateArgumentsV1, arguments)
        data = args.data or None
        if data is not None:
            ensure_json_text(data, field="data")

        self._content_entries.update(
            args.id,
            data=data,
            status=args.status or None,
            published_at=args.publishedAt,
            clear_published_at=args.clears_published_at,
            deadline=deadline,
        )
        return self._content_entries.get(args.id, deadline=deadline)

    def delete_content(
        self,
        arguments: Mapping[str, Any],
        *,
        session: SessionV1 | None = None,
        deadline: float | None = None,
    ) -> bool:
        self._check_session(session)
        args = self._parse(IdArgumentsV1, arguments)
        self._content_entries.delete(args.id, deadline=deadline)
        return True

    # Helpers

    def _check_session(self, session: SessionV1 | None) -> None:
        if session is None and self._require_auth:
            raise self._authentication_required()

    def _page_window(self, args: ListArgumentsV1) -> tuple[int, int]:
        limit = DEFAULT_LIMIT if args.limit is None else args.limit
        offset = DEFAULT_OFFSET if args.offset is None else args.offset
        if limit < 1:
            raise InvalidInputError(code="INVALID_PAGINATION", message="limit must be at least 1.")
        if offset < 0:
            raise InvalidInputError(code="INVALID_PAGINATION", message="offset must not be negative.")
        return min(limit, self._max_page_size), offset

    @staticmethod
    def _page_info(*, total: int, returned: int, limit: int, offset: int) -> PageInfoV1:
        return PageInfoV1(
            totalCount=total,
            hasMore=offset + returned < total,
            limit=limit,
            offset=offset,
        )

    @staticmethod
    def _parse(model: type[ArgsT], arguments: Mapping[str, Any]) -> ArgsT:
        if not isinstance(arguments, Mapping):
            raise InvalidInputError(
                code="INVALID_ARGUMENTS",
                message="Operation arguments must be an object.",
            )
        try:
            return model.model_validate(dict(arguments))
        except ValidationError as exc:
            raise InvalidInputError(
                code="INVALID_ARGUMENTS",
                message="Operation arguments failed validation.",
                details={
                    "errors": exc.errors(include_url=False, include_context=False, include_input=False)
                },
            ) from exc

    @staticmethod
    def _registration_closed() -> ForbiddenError:
        return ForbiddenError(
            code="REGISTRATION_CLOSED",
            message="Registration is not allowed: a user is already registered.",
        )

    @staticmethod
    def _authentication_required() -> UnauthorizedError:
        return UnauthorizedError(
            code="AUTHENTICATION_REQUIRED",
            message="A valid session token is required for this operation.",
        )
