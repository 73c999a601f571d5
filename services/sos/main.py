# Run:
# uvicorn services.sos.main:app --host 0.0.0.0 --port 20006 --reload
# Docs: http://127.0.0.1:20006/docs

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Path, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)
from pydantic import BaseModel, Field

from common.enums import AccessLevel
from common.errors import SafetyCoreError
from common.storage import get_store
from libs.config import SafetySettings, config
from models.contact import AccessGrant, Contact
from models.emergency import DeviceStatus, EmergencySession, MedicalProfile, RecordingMeta
from models.threat import ThreatAssessment
from services.notification.senders import SenderFactory
from services.sos.dispatcher import (
    AppState,
    CancelPanic,
    CheckIn,
    DeviceStatusChanged,
    LocationFix,
    PanicPressed,
    RecordingCaptured,
    SafetyDispatcher,
    SetTracking,
    ShareLocation,
    StartTimer,
    TimerTick,
)

logger = logging.getLogger(__name__)

# ========= Metrics =========

SERVICE_NAME = "sos"
registry = CollectorRegistry()

# Generic per-request counter (shared schema with other services)
REQUEST_COUNT = Counter(
    "service_requests_total",
    "Total HTTP requests handled by the service",
    ["service", "method", "path", "http_status"],
    registry=registry,
)

# Latency histogram per path
REQUEST_LATENCY = Histogram(
    "service_request_duration_seconds",
    "Request latency in seconds",
    ["service", "path"],
    registry=registry,
)

# Business metrics: emergency sessions & package access
EMERGENCY_SESSIONS_TOTAL = Counter(
    "emergency_sessions_total",
    "Total emergency sessions opened",
    ["trigger"],
    registry=registry,
)

SESSION_RESOLVES_TOTAL = Counter(
    "emergency_session_resolves_total",
    "Emergency package access attempts",
    ["outcome"],
    registry=registry,
)


# ========= Schemas =========


class LocationSampleRequest(BaseModel):
    lat: float
    lng: float
    accuracy_meters: float = 0.0
    captured_at: Optional[datetime] = None


class LocationResponse(BaseModel):
    has_fix: bool
    current: Optional[Dict[str, Any]] = None
    speed_kmh: float
    is_stationary: bool
    history_size: int
    threat: Optional[ThreatAssessment] = None


class ContactCreateRequest(BaseModel):
    name: str
    phone: str
    relation: Optional[str] = None


class ContactResponse(BaseModel):
    contact: Contact
    grant: AccessGrant


class AccessLevelRequest(BaseModel):
    access_level: AccessLevel


class TimerStartRequest(BaseModel):
    minutes: Optional[int] = Field(default=None, gt=0)


class TimerStatusResponse(BaseModel):
    state: Literal["idle", "running"]
    active: bool
    duration_seconds: int
    remaining_seconds: int
    display: str
    expired: bool = False
    session_id: Optional[str] = None


class TriggerRequest(BaseModel):
    reason: str = Field(min_length=1)


class TriggerResponse(BaseModel):
    status: Literal["triggered", "ignored"]
    session_id: Optional[str] = None
    access_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    notified: int = 0


class SessionSummary(BaseModel):
    session_id: str
    reason: str
    created_at: datetime
    expires_at: datetime
    access_count: int
    last_accessed_at: Optional[datetime] = None
    active: bool


def _summary(session: EmergencySession) -> SessionSummary:
    return SessionSummary(
        session_id=session.id,
        reason=session.reason,
        created_at=session.created_at,
        expires_at=session.expires_at,
        access_count=session.access_count,
        last_accessed_at=session.last_accessed_at,
        active=session.active,
    )


def _trigger_response(result, trigger: str) -> TriggerResponse:
    if result is None:
        return TriggerResponse(status="ignored")
    EMERGENCY_SESSIONS_TOTAL.labels(trigger=trigger).inc()
    return TriggerResponse(
        status="triggered",
        session_id=result.session.id,
        access_url=result.access_url,
        expires_at=result.session.expires_at,
        notified=result.notified,
    )


def to_http_error(exc: SafetyCoreError) -> HTTPException:
    return HTTPException(status_code=exc.http_status, detail=exc.to_dict())


# ========= App factory =========


def build_state() -> AppState:
    state = AppState(
        store=get_store(config.STORAGE_BACKEND),
        sender=SenderFactory().get_sender(config.NOTIFICATION_SENDER),
    )
    state.load()
    return state


def get_dispatcher(request: Request) -> SafetyDispatcher:
    return request.app.state.dispatcher


def create_app(state: Optional[AppState] = None) -> FastAPI:
    app = FastAPI(
        title="SOS Service",
        version="1.0.0",
        description="Emergency sessions, trusted contacts, safety timer and threat scoring APIs.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.dispatcher = SafetyDispatcher(state or build_state())

    @app.middleware("http")
    async def prometheus_middleware(request: Request, call_next):
        """
        Middleware to track:
        - request count
        - latency per path
        for every HTTP request handled by this service.
        """
        start = time.time()
        response = await call_next(request)

        path = request.url.path

        REQUEST_COUNT.labels(
            service=SERVICE_NAME,
            method=request.method,
            path=path,
            http_status=response.status_code,
        ).inc()

        REQUEST_LATENCY.labels(
            service=SERVICE_NAME,
            path=path,
        ).observe(time.time() - start)

        return response

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    @app.get("/")
    async def root():
        return {"service": SERVICE_NAME, "status": "running"}

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": SERVICE_NAME}

    @app.get("/metrics")
    async def metrics():
        """
        Expose Prometheus metrics for this SOS service.
        """
        return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    # ========= Location & threat =========

    @app.post("/v1/location/samples", response_model=LocationResponse)
    async def record_sample(
        body: LocationSampleRequest, dispatcher: SafetyDispatcher = Depends(get_dispatcher)
    ):
        state = dispatcher.state
        payload = body.model_dump()
        if payload["captured_at"] is None:
            payload["captured_at"] = state.clock()
        try:
            dispatcher.handle(LocationFix(sample=payload))
        except SafetyCoreError as e:
            raise to_http_error(e)
        return _location_response(dispatcher)

    @app.get("/v1/location", response_model=LocationResponse)
    async def get_location(dispatcher: SafetyDispatcher = Depends(get_dispatcher)):
        return _location_response(dispatcher)

    @app.put("/v1/location/tracking")
    async def set_tracking(
        enabled: bool = Query(...), dispatcher: SafetyDispatcher = Depends(get_dispatcher)
    ):
        return {"tracking": dispatcher.handle(SetTracking(enabled=enabled))}

    @app.get("/v1/threat", response_model=Optional[ThreatAssessment])
    async def get_threat(dispatcher: SafetyDispatcher = Depends(get_dispatcher)):
        return dispatcher.state.monitor.latest

    # ========= Device, profile, media =========

    @app.put("/v1/device/status", response_model=DeviceStatus)
    async def update_device(
        body: DeviceStatus, dispatcher: SafetyDispatcher = Depends(get_dispatcher)
    ):
        return dispatcher.handle(DeviceStatusChanged(status=body))

    @app.put("/v1/profile/medical", response_model=MedicalProfile)
    async def update_medical_profile(
        body: MedicalProfile, dispatcher: SafetyDispatcher = Depends(get_dispatcher)
    ):
        dispatcher.state.profile = body
        dispatcher.state.save()
        return body

    @app.post("/v1/recordings", response_model=RecordingMeta)
    async def add_recording(
        body: RecordingMeta, dispatcher: SafetyDispatcher = Depends(get_dispatcher)
    ):
        return dispatcher.handle(RecordingCaptured(recording=body))

    @app.get("/v1/recordings", response_model=List[RecordingMeta])
    async def list_recordings(dispatcher: SafetyDispatcher = Depends(get_dispatcher)):
        return dispatcher.state.recordings

    # ========= Settings =========

    @app.get("/v1/settings", response_model=SafetySettings)
    async def get_settings(dispatcher: SafetyDispatcher = Depends(get_dispatcher)):
        return dispatcher.state.settings

    @app.put("/v1/settings", response_model=SafetySettings)
    async def update_settings(
        body: SafetySettings, dispatcher: SafetyDispatcher = Depends(get_dispatcher)
    ):
        dispatcher.state.settings = body
        dispatcher.state.save()
        return body

    # ========= Contacts =========

    def _contact_response(dispatcher: SafetyDispatcher, contact_id: str) -> ContactResponse:
        contacts = dispatcher.state.contacts
        return ContactResponse(
            contact=contacts.get(contact_id), grant=contacts.grant_for(contact_id)
        )

    @app.post("/v1/contacts", response_model=ContactResponse, status_code=201)
    async def add_contact(
        body: ContactCreateRequest, dispatcher: SafetyDispatcher = Depends(get_dispatcher)
    ):
        try:
            contact = dispatcher.state.contacts.add(body.name, body.phone, body.relation)
        except SafetyCoreError as e:
            raise to_http_error(e)
        dispatcher.state.save()
        return _contact_response(dispatcher, contact.id)

    @app.get("/v1/contacts", response_model=List[ContactResponse])
    async def list_contacts(dispatcher: SafetyDispatcher = Depends(get_dispatcher)):
        return [_contact_response(dispatcher, c.id) for c in dispatcher.state.contacts.list()]

    @app.post("/v1/contacts/{contact_id}/verify", response_model=ContactResponse)
    async def verify_contact(
        contact_id: str = Path(...), dispatcher: SafetyDispatcher = Depends(get_dispatcher)
    ):
        try:
            dispatcher.state.contacts.verify(contact_id)
        except SafetyCoreError as e:
            raise to_http_error(e)
        dispatcher.state.save()
        return _contact_response(dispatcher, contact_id)

    @app.patch("/v1/contacts/{contact_id}/permissions", response_model=ContactResponse)
    async def update_permissions(
        body: Dict[str, bool],
        contact_id: str = Path(...),
        dispatcher: SafetyDispatcher = Depends(get_dispatcher),
    ):
        try:
            dispatcher.state.contacts.set_permissions(contact_id, body)
        except SafetyCoreError as e:
            raise to_http_error(e)
        dispatcher.state.save()
        return _contact_response(dispatcher, contact_id)

    @app.put("/v1/contacts/{contact_id}/access-level", response_model=ContactResponse)
    async def update_access_level(
        body: AccessLevelRequest,
        contact_id: str = Path(...),
        dispatcher: SafetyDispatcher = Depends(get_dispatcher),
    ):
        try:
            dispatcher.state.contacts.set_access_level(contact_id, body.access_level)
        except SafetyCoreError as e:
            raise to_http_error(e)
        dispatcher.state.save()
        return _contact_response(dispatcher, contact_id)

    @app.post("/v1/contacts/{contact_id}/revoke", response_model=ContactResponse)
    async def revoke_contact(
        contact_id: str = Path(...), dispatcher: SafetyDispatcher = Depends(get_dispatcher)
    ):
        try:
            dispatcher.state.contacts.revoke(contact_id)
        except SafetyCoreError as e:
            raise to_http_error(e)
        dispatcher.state.save()
        return _contact_response(dispatcher, contact_id)

    @app.delete("/v1/contacts/{contact_id}", status_code=204)
    async def delete_contact(
        contact_id: str = Path(...), dispatcher: SafetyDispatcher = Depends(get_dispatcher)
    ):
        dispatcher.state.contacts.remove(contact_id)
        dispatcher.state.save()
        return Response(status_code=204)

    # ========= Safety timer =========

    @app.get("/v1/timer", response_model=TimerStatusResponse)
    async def timer_status(dispatcher: SafetyDispatcher = Depends(get_dispatcher)):
        return TimerStatusResponse(**dispatcher.state.timer.status())

    @app.post("/v1/timer/start", response_model=TimerStatusResponse)
    async def start_timer(
        body: TimerStartRequest, dispatcher: SafetyDispatcher = Depends(get_dispatcher)
    ):
        try:
            status = dispatcher.handle(StartTimer(minutes=body.minutes))
        except SafetyCoreError as e:
            raise to_http_error(e)
        return TimerStatusResponse(**status)

    @app.post("/v1/timer/tick", response_model=TimerStatusResponse)
    async def tick_timer(dispatcher: SafetyDispatcher = Depends(get_dispatcher)):
        result = dispatcher.handle(TimerTick())
        if result is not None:
            _trigger_response(result, "timer")
        return TimerStatusResponse(
            **dispatcher.state.timer.status(),
            expired=result is not None,
            session_id=result.session.id if result is not None else None,
        )

    @app.post("/v1/timer/check-in", response_model=TimerStatusResponse)
    async def check_in(dispatcher: SafetyDispatcher = Depends(get_dispatcher)):
        try:
            dispatcher.handle(CheckIn())
        except SafetyCoreError as e:
            raise to_http_error(e)
        return TimerStatusResponse(**dispatcher.state.timer.status())

    # ========= Emergency =========

    @app.post("/v1/emergency/panic", response_model=TriggerResponse)
    async def panic(dispatcher: SafetyDispatcher = Depends(get_dispatcher)):
        return _trigger_response(dispatcher.handle(PanicPressed()), "panic")

    @app.post("/v1/emergency/panic/cancel")
    async def cancel_panic(dispatcher: SafetyDispatcher = Depends(get_dispatcher)):
        dispatcher.handle(CancelPanic())
        return {"panic_mode": dispatcher.state.panic_mode}

    @app.post("/v1/emergency/share-location", response_model=TriggerResponse)
    async def share_location(dispatcher: SafetyDispatcher = Depends(get_dispatcher)):
        return _trigger_response(dispatcher.handle(ShareLocation()), "share_location")

    @app.post("/v1/emergency/trigger", response_model=TriggerResponse)
    async def trigger(
        body: TriggerRequest, dispatcher: SafetyDispatcher = Depends(get_dispatcher)
    ):
        result = dispatcher.trigger(body.reason)
        dispatcher.state.save()
        return _trigger_response(result, "manual")

    @app.get("/v1/emergency/sessions", response_model=List[SessionSummary])
    async def list_sessions(dispatcher: SafetyDispatcher = Depends(get_dispatcher)):
        return [_summary(s) for s in dispatcher.state.broker.sessions()]

    @app.get("/v1/emergency/sessions/{session_id}")
    async def resolve_session(
        session_id: str = Path(..., description="Emergency session to open"),
        contact_id: str = Query(..., description="Requesting contact"),
        dispatcher: SafetyDispatcher = Depends(get_dispatcher),
    ):
        try:
            package = dispatcher.state.broker.resolve(session_id, contact_id)
        except SafetyCoreError as e:
            SESSION_RESOLVES_TOTAL.labels(outcome=e.error_code.lower()).inc()
            raise to_http_error(e)
        SESSION_RESOLVES_TOTAL.labels(outcome="ok").inc()
        dispatcher.state.save()
        return package

    @app.post("/v1/emergency/sessions/{session_id}/deactivate", response_model=SessionSummary)
    async def deactivate_session(
        session_id: str = Path(...), dispatcher: SafetyDispatcher = Depends(get_dispatcher)
    ):
        try:
            session = dispatcher.state.broker.deactivate(session_id)
        except SafetyCoreError as e:
            raise to_http_error(e)
        dispatcher.state.save()
        return _summary(session)


def _location_response(dispatcher: SafetyDispatcher) -> LocationResponse:
    state = dispatcher.state
    current = state.track.current()
    speed = state.track.speed()
    return LocationResponse(
        has_fix=state.track.has_fix(),
        current=current.model_dump(mode="json") if state.track.has_fix() else None,
        speed_kmh=speed.speed_kmh,
        is_stationary=speed.is_stationary,
        history_size=len(state.track),
        threat=state.monitor.latest,
    )


app = create_app()
