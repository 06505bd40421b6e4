# clinic/dependencies.py - FastAPI wiring for the clinic services
from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .audit_trail import AuditTrail
from .clock import Clock
from .config import Settings
from .context import RequestContext
from .database import get_db
from .models import UserRole
from .results import NotFound, ValidationFailure
from .security import resolve_client_ip
from .services.authenticator import Authenticator
from .services.directory import CredentialStore
from .services.ledger import LoginAttemptLedger
from .services.scheduling import SchedulingEngine
from .services.session_guard import Deny, DenyReason, SessionGuard
from .sessions import SessionStoreUnavailable, UserSession

UNAVAILABLE_MESSAGE = "The system is temporarily unavailable. Please try again later."


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_session_store(request: Request):
    return request.app.state.session_store


def get_request_context(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    store=Depends(get_session_store),
) -> RequestContext:
    client_host = request.client.host if request.client else None
    try:
        session = store.get(request.cookies.get(settings.session_cookie_name))
    except SessionStoreUnavailable:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=UNAVAILABLE_MESSAGE)
    return RequestContext(
        ip_address=resolve_client_ip(request.headers, client_host),
        path=request.url.path,
        user_agent=request.headers.get("user-agent", ""),
        session=session,
    )


def get_audit_trail(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> AuditTrail:
    return AuditTrail(db, clock, page_size=settings.audit_page_size)


def get_session_guard(
    audit: AuditTrail = Depends(get_audit_trail),
    clock: Clock = Depends(get_clock),
    store=Depends(get_session_store),
    settings: Settings = Depends(get_app_settings),
) -> SessionGuard:
    return SessionGuard(store, audit, clock, timeout_seconds=settings.session_timeout_seconds)


def get_authenticator(
    db: Session = Depends(get_db),
    audit: AuditTrail = Depends(get_audit_trail),
    clock: Clock = Depends(get_clock),
    store=Depends(get_session_store),
    settings: Settings = Depends(get_app_settings),
) -> Authenticator:
    ledger = LoginAttemptLedger(db, clock, window_minutes=settings.lockout_window_minutes)
    return Authenticator(CredentialStore(db), ledger, audit, store, clock)


def get_scheduling_engine(
    db: Session = Depends(get_db),
    audit: AuditTrail = Depends(get_audit_trail),
    clock: Clock = Depends(get_clock),
) -> SchedulingEngine:
    return SchedulingEngine(db, clock, audit)


def _enforce(guard: SessionGuard, ctx: RequestContext, settings: Settings, roles=None) -> UserSession:
    try:
        result = guard.guard(ctx, roles=roles)
    except SessionStoreUnavailable:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=UNAVAILABLE_MESSAGE)
    if isinstance(result, Deny):
        if result.reason == DenyReason.FORBIDDEN:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=result.message)
        headers = None
        if result.reason == DenyReason.TIMED_OUT:
            # Tell the browser to drop the dead cookie
            headers = {"Set-Cookie": f"{settings.session_cookie_name}=; Max-Age=0; Path=/; HttpOnly; SameSite=lax"}
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=result.message, headers=headers)
    return result.session


def require_session(
    ctx: RequestContext = Depends(get_request_context),
    guard: SessionGuard = Depends(get_session_guard),
    settings: Settings = Depends(get_app_settings),
) -> UserSession:
    """Dependency that requires a live, authenticated session."""
    return _enforce(guard, ctx, settings)


def require_admin(
    ctx: RequestContext = Depends(get_request_context),
    guard: SessionGuard = Depends(get_session_guard),
    settings: Settings = Depends(get_app_settings),
) -> UserSession:
    """Dependency that requires a live session with the admin role."""
    return _enforce(guard, ctx, settings, roles=[UserRole.admin.value])


def error_response(result) -> JSONResponse:
    """HTTP response for a non-success service result."""
    if isinstance(result, ValidationFailure):
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"errors": list(result.messages)})
    if isinstance(result, NotFound):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": result.message})
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": UNAVAILABLE_MESSAGE})
