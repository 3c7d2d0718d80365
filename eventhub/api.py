"""FastAPI application for EventHub."""

from __future__ import annotations

import logging
import tomllib
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .crud import (
    create_event,
    get_event,
    get_user_by_token,
    list_created_events,
    list_joined_events,
)
from .database import SessionLocal
from .errors import EventHubError, StorageUnavailableError
from .membership import delete_event, join_event, leave_event, update_event
from .models import Event, User
from .queries import build_event_filter, coerce_page_request, list_events
from .scheduler import start_scheduler, stop_scheduler
from .storage import init_db
from .utils import isoformat_utc

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("eventhub")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="EventHub", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _get_bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = _get_bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    user = get_user_by_token(db, token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid bearer token")
    return user


@app.exception_handler(EventHubError)
async def event_hub_error_handler(request: Request, exc: EventHubError):
    return JSONResponse(exc.as_payload(), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers
    )


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    logger.error(
        "Operational database error on %s %s: %s",
        request.method,
        request.url.path,
        raw,
    )
    error = StorageUnavailableError()
    return JSONResponse(error.as_payload(), status_code=error.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"detail": exc.errors()}, status_code=422)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


class EventCreatePayload(BaseModel):
    title: str
    description: str
    location: str
    date_time: str = Field(
        ...,
        validation_alias=AliasChoices("date_time", "dateTime"),
        description="ISO datetime string in the future",
    )
    category: str | None = None
    max_attendees: int | None = Field(
        None,
        validation_alias=AliasChoices("max_attendees", "maxAttendees"),
        description="Optional attendance ceiling",
    )


class EventUpdatePayload(BaseModel):
    title: str | None = None
    description: str | None = None
    location: str | None = None
    date_time: str | None = Field(
        None,
        validation_alias=AliasChoices("date_time", "dateTime"),
        description="ISO datetime string in the future",
    )
    category: str | None = None


def _serialize_user_ref(user: User | None) -> dict[str, str] | None:
    if user is None:
        return None
    return {"id": user.id, "name": user.name}


def _serialize_event(event: Event, *, include_attendees: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "date_time": isoformat_utc(event.date_time),
        "category": event.category,
        "status": event.status,
        "creator": _serialize_user_ref(event.creator),
        "creator_name": event.creator_name,
        "attendee_count": event.attendee_count,
        "max_attendees": event.max_attendees,
        "created_at": isoformat_utc(event.created_at),
        "last_modified": isoformat_utc(event.last_modified),
    }
    if include_attendees:
        data["attendees"] = [_serialize_user_ref(user) for user in event.attendees]
    return data


def _serialize_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "created_at": isoformat_utc(user.created_at),
    }


@app.get("/healthz")
def healthz():
    return {"status": "ok", "version": APP_VERSION}


# -------- JSON API (v1) --------


@app.get("/api/v1/events")
def api_list_events(
    search: str | None = Query(None),
    date_filter: str | None = Query(None, alias="dateFilter"),
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    page: str | None = Query(None),
    limit: str | None = Query(None),
    db: Session = Depends(get_db),
):
    event_filter = build_event_filter(
        search=search,
        date_filter=date_filter,
        start_date=start_date,
        end_date=end_date,
    )
    page_request = coerce_page_request(
        page,
        limit,
        default_limit=settings.events_per_page,
        max_limit=settings.max_page_size,
    )
    events, pagination = list_events(
        db, event_filter=event_filter, page_request=page_request
    )
    return {
        "events": [_serialize_event(event, include_attendees=False) for event in events],
        "pagination": pagination,
    }


@app.post("/api/v1/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    event = create_event(
        db,
        creator=user,
        title=payload.title,
        description=payload.description,
        location=payload.location,
        date_time=payload.date_time,
        category=payload.category,
        max_attendees=payload.max_attendees,
    )
    logger.info("Event %s created by %s", event.id, user.id)
    return {"event": _serialize_event(event)}


@app.get("/api/v1/events/{event_id}")
def api_get_event(event_id: str, db: Session = Depends(get_db)):
    return {"event": _serialize_event(get_event(db, event_id))}


@app.put("/api/v1/events/{event_id}")
@app.patch("/api/v1/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    event = update_event(db, event_id, user, payload.model_dump(exclude_unset=True))
    return {"event": _serialize_event(event)}


@app.delete("/api/v1/events/{event_id}", status_code=204)
def api_delete_event(
    event_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    delete_event(db, event_id, user)
    return Response(status_code=204)


@app.post("/api/v1/events/{event_id}/join")
def api_join_event(
    event_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    event = join_event(db, event_id, user)
    return {"event": _serialize_event(event)}


@app.post("/api/v1/events/{event_id}/leave")
def api_leave_event(
    event_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    event = leave_event(db, event_id, user)
    return {"event": _serialize_event(event)}


@app.get("/api/v1/me")
def api_current_user(user: User = Depends(get_current_user)):
    return {"user": _serialize_user(user)}


@app.get("/api/v1/me/events/created")
def api_created_events(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    events = list_created_events(db, user)
    return {"events": [_serialize_event(event, include_attendees=False) for event in events]}


@app.get("/api/v1/me/events/joined")
def api_joined_events(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    events = list_joined_events(db, user)
    return {"events": [_serialize_event(event, include_attendees=False) for event in events]}
