from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any

import anyio
import structlog
from fastapi import Body, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .content_entry_store import ContentEntryStore
from .content_type_store import ContentTypeStore
from .contract import MAX_PAGE_SIZE, ErrorBody, ErrorResponse
from .dispatcher import OperationDispatcher
from .errors import ContentApiError
from .logging_config import configure_logging
from .runtime_db import RuntimeDatabase, deadline_after
from .session_store import SessionStore
from .user_store import UserStore

REQUEST_TIMEOUT_SECONDS = float(os.getenv("CONTENTAPI_REQUEST_TIMEOUT_SECONDS", "15"))
MAX_REQUEST_BYTES = int(os.getenv("CONTENTAPI_MAX_REQUEST_BYTES", "1048576"))


def _env_bool(name: str, *, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


configure_logging(
    os.getenv("CONTENTAPI_LOG_LEVEL", "INFO"),
    os.getenv("CONTENTAPI_LOG_FORMAT", "console"),
)
logger = structlog.get_logger(__name__)

runtime_db = RuntimeDatabase.from_env()
session_store = SessionStore.from_env()
dispatcher = OperationDispatcher(
    users=UserStore.from_env(runtime_db),
    content_types=ContentTypeStore(runtime_db),
    content_entries=ContentEntryStore(runtime_db),
    sessions=session_store,
    require_auth=_env_bool("CONTENTAPI_REQUIRE_AUTH", default=True),
    max_page_size=int(os.getenv("CONTENTAPI_MAX_PAGE_SIZE", str(MAX_PAGE_SIZE))),
)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    logger.info("app.started", db_path=str(runtime_db.storage_path))
    yield
    session_store.close()
    logger.info("app.stopped")


app = FastAPI(
    title="Content API",
    description=(
        "Schema-driven content backend. Content types and content entries are reached "
        "through a single named-operation endpoint gated by session tokens."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

cors_origins = [origin.strip() for origin in os.getenv("CONTENTAPI_CORS_ORIGINS", "*").split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins or ["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


def _operation_http_error(exc: ContentApiError) -> HTTPException:
    body = ErrorResponse(
        error=ErrorBody(kind=exc.kind, code=exc.code, message=exc.message, details=exc.details)
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return HTTPException(status_code=exc.status_code, detail=body.model_dump()["error"], headers=headers)


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme != "Bearer" or not token.strip():
        return None
    return token.strip()


def _shape(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json", by_alias=True)
    return result


@app.middleware("http")
async def request_limits_and_timeout(request, call_next):
    content_length = request.headers.get("content-length")
    if content_length is not None:
        try:
            if int(content_length) > MAX_REQUEST_BYTES:
                return JSONResponse(status_code=413, content={"detail": "Request body too large."})
        except ValueError:
            return JSONResponse(status_code=400, content={"detail": "Invalid Content-Length header."})

    try:
        with anyio.fail_after(REQUEST_TIMEOUT_SECONDS):
            return await call_next(request)
    except TimeoutError:
        return JSONResponse(status_code=504, content={"detail": "Request timed out."})


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/v1/operations", tags=["operations"])
def list_operations() -> dict[str, list[str]]:
    return {"operations": dispatcher.operations}


@app.post(
    "/v1/operations/{operation}",
    tags=["operations"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
def run_operation(
    operation: str,
    arguments: dict[str, Any] | None = Body(default=None),
    authorization: str | None = Header(default=None),
) -> dict[str, Any]:
    try:
        result = dispatcher.dispatch(
            operation,
            arguments or {},
            token=_bearer_token(authorization),
            deadline=deadline_after(REQUEST_TIMEOUT_SECONDS),
        )
    except ContentApiError as exc:
        raise _operation_http_error(exc) from exc
    return {"data": _shape(result)}
