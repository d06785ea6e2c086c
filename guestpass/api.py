"""FastAPI application for GuestPass."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .checkin import CheckInResult, check_in
from .config import settings
from .crud import (
    ParticipantInput,
    add_participants,
    create_event,
    delete_event,
    delete_participant,
    ensure_profile,
    get_event_participant,
    get_owned_event,
    list_events,
    list_participants,
    respond_to_invitation,
    set_participant_status,
    update_event,
)
from .database import SessionLocal, get_session
from .errors import (
    AuthorizationError,
    ConfigurationError,
    GuestPassError,
    ValidationError,
)
from .identity import Identity
from .invitations import (
    MISSING_API_KEY_MESSAGE,
    InvitationReport,
    resolve_invitation,
    send_invitations,
)
from .mailer import DOMAIN_HELP_URL, mailer_from_settings
from .models import Event, Participant, ParticipantStatus, Profile
from .notifications import ParticipantChange, subscribe
from .qr import render_qr_png
from .stats import event_stats
from .storage import init_db
from .tokens import invitation_url
from .utils import format_event_date, is_past

# Use uvicorn's error logger so messages get the level prefix in the default log
# format (needed for downstream filtering like Loki).
logger = logging.getLogger("uvicorn.error")

DOMAIN_VERIFICATION_ERROR = {
    "error": "Email domain verification required",
    "code": "DOMAIN_NOT_VERIFIED",
    "message": (
        "To send emails, please verify your domain in Resend or use "
        "'onboarding@resend.dev' for testing."
    ),
    "helpUrl": DOMAIN_HELP_URL,
}

STREAM_KEEPALIVE_SECONDS = 15.0


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("guestpass")
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
    yield


app = FastAPI(title="GuestPass", version=APP_VERSION, lifespan=lifespan)


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


def get_identity(
    user_id: str | None = Header(None, alias="X-Auth-User-Id"),
    email: str | None = Header(None, alias="X-Auth-User-Email"),
    full_name: str | None = Header(None, alias="X-Auth-User-Name"),
) -> Identity:
    """Build the caller identity forwarded by the authenticating proxy."""
    cleaned_id = (user_id or "").strip()
    if not cleaned_id:
        raise AuthorizationError("UNAUTHORIZED", "Unauthorized")
    return Identity(
        user_id=cleaned_id,
        email=(email or "").strip(),
        full_name=(full_name or "").strip(),
    )


def get_mailer():
    mailer = mailer_from_settings(settings)
    try:
        yield mailer
    finally:
        if mailer is not None:
            mailer.close()


def _base_url(request: Request) -> str:
    return (settings.public_base_url or str(request.base_url)).rstrip("/")


@app.exception_handler(GuestPassError)
async def guestpass_error_handler(request: Request, exc: GuestPassError):
    return JSONResponse(
        {"error": exc.message, "code": exc.code, "message": exc.message},
        status_code=exc.status_code,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    lower = raw.lower()
    if "database is locked" in lower:
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    return JSONResponse({"error": detail}, status_code=status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"error": "Invalid request", "detail": exc.errors()}, status_code=422
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse(
        {"error": "Internal server error", "message": str(exc) or "Unknown error occurred"},
        status_code=500,
    )


def _serialize_profile(profile: Profile):
    return {
        "id": profile.id,
        "email": profile.email,
        "full_name": profile.full_name,
        "created_at": profile.created_at.isoformat(),
        "updated_at": profile.updated_at.isoformat(),
    }


def _serialize_participant(participant: Participant, *, include_event: bool = False):
    payload = {
        "id": participant.id,
        "event_id": participant.event_id,
        "email": participant.email,
        "name": participant.name,
        "status": participant.status,
        "invitation_token": participant.invitation_token,
        "qr_code_data": participant.qr_code_data,
        "created_at": participant.created_at.isoformat(),
        "updated_at": participant.updated_at.isoformat(),
    }
    if include_event and participant.event is not None:
        payload["event"] = {
            "id": participant.event.id,
            "title": participant.event.title,
            "location": participant.event.location,
            "event_date": participant.event.event_date.isoformat(),
        }
    return payload


def _serialize_event(
    event: Event,
    *,
    include_participants: list[Participant] | None = None,
):
    payload = {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "capacity": event.capacity,
        "event_date": event.event_date.isoformat(),
        "event_date_display": format_event_date(event.event_date),
        "created_by": event.created_by,
        "created_at": event.created_at.isoformat(),
        "updated_at": event.updated_at.isoformat(),
    }
    if include_participants is not None:
        payload["participants"] = [
            _serialize_participant(p) for p in include_participants
        ]
        payload["stats"] = event_stats(event.capacity, include_participants)
    return payload


def _serialize_invitation_report(report: InvitationReport):
    return {
        "success": report.success,
        "results": [
            {"participantId": r.participant_id, "email": r.email, "success": True}
            for r in report.results
        ],
        "errors": [
            {"participantId": e.participant_id, "email": e.email, "error": e.error}
            for e in report.errors
        ],
        "totalSent": report.total_sent,
        "totalFailed": report.total_failed,
    }


def _serialize_check_in(result: CheckInResult):
    return {
        "success": result.success,
        "outcome": result.outcome.value,
        "message": result.message,
        "participant": _serialize_participant(result.participant, include_event=True)
        if result.participant is not None
        else None,
    }


class EventCreatePayload(BaseModel):
    title: str
    description: str | None = None
    location: str
    capacity: int = Field(..., ge=1, description="Maximum number of attendees")
    event_date: datetime = Field(..., description="ISO datetime string")


class EventUpdatePayload(BaseModel):
    title: str | None = None
    description: str | None = None
    location: str | None = None
    capacity: int | None = Field(None, ge=1)
    event_date: datetime | None = Field(None, description="ISO datetime string")


class ParticipantEntryPayload(BaseModel):
    email: str = ""
    name: str | None = None


class ParticipantsCreatePayload(BaseModel):
    participants: list[ParticipantEntryPayload]


class StatusChangePayload(BaseModel):
    status: str


class InvitationResponsePayload(BaseModel):
    response: str


class CheckInPayload(BaseModel):
    payload: str


class SendInvitationsPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: str | None = Field(None, alias="eventId")
    participant_ids: list[str] | None = Field(None, alias="participantIds")


@app.get("/healthz", include_in_schema=False)
def healthz():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/api/v1/me")
def api_me(identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    profile = ensure_profile(db, identity)
    return {"profile": _serialize_profile(profile)}


@app.get("/api/v1/events")
def api_list_events(
    identity: Identity = Depends(get_identity), db: Session = Depends(get_db)
):
    return {"events": [_serialize_event(e) for e in list_events(db, identity)]}


@app.post("/api/v1/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    event = create_event(
        db,
        identity,
        title=payload.title,
        description=payload.description,
        location=payload.location,
        capacity=payload.capacity,
        event_date=payload.event_date,
    )
    return {"event": _serialize_event(event)}


@app.get("/api/v1/events/{event_id}")
def api_get_event(
    event_id: str,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    event = get_owned_event(db, identity, event_id)
    participants = list(list_participants(db, event))
    return {"event": _serialize_event(event, include_participants=participants)}


@app.patch("/api/v1/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    event = get_owned_event(db, identity, event_id)
    data = payload.model_dump(exclude_unset=True)
    event = update_event(
        db,
        event,
        title=data.get("title"),
        description=data.get("description"),
        location=data.get("location"),
        capacity=data.get("capacity"),
        event_date=data.get("event_date"),
        clear_description="description" in data and data["description"] is None,
    )
    return {"event": _serialize_event(event)}


@app.delete("/api/v1/events/{event_id}", status_code=204)
def api_delete_event(
    event_id: str,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    event = get_owned_event(db, identity, event_id)
    delete_event(db, event)
    return Response(status_code=204)


@app.post("/api/v1/events/{event_id}/participants", status_code=201)
def api_add_participants(
    event_id: str,
    payload: ParticipantsCreatePayload,
    request: Request,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    event = get_owned_event(db, identity, event_id)
    participants = add_participants(
        db,
        event,
        [ParticipantInput(p.email, p.name) for p in payload.participants],
        base_url=_base_url(request),
    )
    return {"participants": [_serialize_participant(p) for p in participants]}


@app.patch("/api/v1/events/{event_id}/participants/{participant_id}")
def api_set_participant_status(
    event_id: str,
    participant_id: str,
    payload: StatusChangePayload,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    event = get_owned_event(db, identity, event_id)
    participant = get_event_participant(db, event, participant_id)
    set_participant_status(db, participant, payload.status)
    return {"participant": _serialize_participant(participant)}


@app.delete("/api/v1/events/{event_id}/participants/{participant_id}", status_code=204)
def api_delete_participant(
    event_id: str,
    participant_id: str,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    event = get_owned_event(db, identity, event_id)
    participant = get_event_participant(db, event, participant_id)
    delete_participant(db, participant)
    return Response(status_code=204)


def _owned_event_id(event_id: str, identity: Identity = Depends(get_identity)) -> str:
    # Released before streaming starts; a stream may stay open for hours.
    with get_session() as db:
        return get_owned_event(db, identity, event_id).id


def _change_event(change: ParticipantChange) -> str:
    data = json.dumps(
        {
            "event_id": change.event_id,
            "participant_id": change.participant_id,
            "kind": change.kind,
        }
    )
    return f"event: participants\ndata: {data}\n\n"


@app.get("/api/v1/events/{event_id}/participants/stream")
async def api_stream_participant_changes(
    request: Request, owned_event_id: str = Depends(_owned_event_id)
):
    """Server-sent events for every committed change to the guest list."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[ParticipantChange] = asyncio.Queue()

    def enqueue(change: ParticipantChange) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, change)

    unsubscribe = subscribe(owned_event_id, enqueue)

    async def stream():
        try:
            yield ": connected\n\n"
            while not await request.is_disconnected():
                try:
                    change = await asyncio.wait_for(
                        queue.get(), timeout=STREAM_KEEPALIVE_SECONDS
                    )
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield _change_event(change)
        finally:
            unsubscribe()

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.post("/api/send-invitations")
def api_send_invitations(
    payload: SendInvitationsPayload,
    request: Request,
    identity: Identity = Depends(get_identity),
    mailer=Depends(get_mailer),
    db: Session = Depends(get_db),
):
    if mailer is None:
        raise ConfigurationError("MISSING_API_KEY", MISSING_API_KEY_MESSAGE)
    if not payload.event_id or payload.participant_ids is None:
        raise ValidationError(
            "INVALID_REQUEST", "Event ID and participant IDs are required"
        )
    report = send_invitations(
        db,
        identity,
        event_id=payload.event_id,
        participant_ids=payload.participant_ids,
        mailer=mailer,
        base_url=_base_url(request),
    )
    body = _serialize_invitation_report(report)
    if report.domain_verification_required:
        return JSONResponse(
            {**body, **DOMAIN_VERIFICATION_ERROR, "results": []}, status_code=400
        )
    return body


@app.get("/api/v1/invitations/{token}")
def api_get_invitation(token: str, db: Session = Depends(get_db)):
    participant = resolve_invitation(db, token)
    event = participant.event
    past = is_past(event.event_date)
    organizer = event.organizer.display_name if event.organizer else None
    return {
        "participant": _serialize_participant(participant),
        "event": {**_serialize_event(event), "organizer_name": organizer},
        "can_respond": not past
        and participant.status == ParticipantStatus.PENDING.value,
        "can_check_in": not past
        and participant.status == ParticipantStatus.ACCEPTED.value,
    }


@app.post("/api/v1/invitations/{token}/respond")
def api_respond_to_invitation(
    token: str, payload: InvitationResponsePayload, db: Session = Depends(get_db)
):
    participant = resolve_invitation(db, token)
    respond_to_invitation(db, participant, payload.response)
    return {"participant": _serialize_participant(participant, include_event=True)}


@app.get("/api/v1/invitations/{token}/qr.png")
def api_invitation_qr(token: str, request: Request, db: Session = Depends(get_db)):
    participant = resolve_invitation(db, token)
    data = participant.qr_code_data or invitation_url(
        _base_url(request), participant.invitation_token
    )
    return Response(content=render_qr_png(data), media_type="image/png")


@app.post("/api/v1/check-in")
def api_check_in(
    payload: CheckInPayload,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    return _serialize_check_in(check_in(db, payload.payload, identity))
