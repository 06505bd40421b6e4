# clinic/routers/auth.py
import logging

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm

from .. import schemas
from ..config import Settings
from ..context import RequestContext
from ..dependencies import (
    error_response, get_app_settings, get_authenticator, get_request_context, require_session,
)
from ..results import SystemFailure
from ..services.authenticator import Authenticator
from ..sessions import SessionStoreUnavailable, UserSession

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)


def _session_user(session: UserSession) -> schemas.SessionUser:
    return schemas.SessionUser(
        user_id=session.user_id,
        username=session.username,
        role=session.role,
        login_time=session.login_time,
        last_activity=session.last_activity,
    )


@router.post("/login", response_model=schemas.LoginResponse, responses={401: {"model": schemas.LoginFailureResponse}, 423: {"model": schemas.LoginFailureResponse}})
def login(
    response: Response,
    form_data: OAuth2PasswordRequestForm = Depends(),
    ctx: RequestContext = Depends(get_request_context),
    authenticator: Authenticator = Depends(get_authenticator),
    settings: Settings = Depends(get_app_settings),
):
    result = authenticator.login(form_data.username, form_data.password, ctx)
    if isinstance(result, SystemFailure):
        return error_response(result)

    outcome = result.value
    if not outcome.success:
        body = schemas.LoginFailureResponse(
            detail=outcome.message,
            locked=outcome.locked,
            lockout_until=outcome.lockout_until,
            attempts=outcome.attempts,
            remaining_attempts=None if outcome.locked else outcome.remaining_attempts,
            attempt_message=outcome.attempt_message,
        )
        code = status.HTTP_423_LOCKED if outcome.locked else status.HTTP_401_UNAUTHORIZED
        return JSONResponse(status_code=code, content=body.model_dump(mode="json"))

    response.set_cookie(
        key=settings.session_cookie_name,
        value=outcome.session.session_id,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return schemas.LoginResponse(message=outcome.message, user=_session_user(outcome.session))


@router.post("/logout")
def logout(
    response: Response,
    session: UserSession = Depends(require_session),
    ctx: RequestContext = Depends(get_request_context),
    authenticator: Authenticator = Depends(get_authenticator),
    settings: Settings = Depends(get_app_settings),
):
    try:
        authenticator.logout(ctx)
    except SessionStoreUnavailable:
        logger.error(f"Could not destroy session for '{session.username}' on logout")
    response.delete_cookie(settings.session_cookie_name)
    return {"message": "You have been logged out."}


@router.get("/me", response_model=schemas.SessionUser)
def read_current_session(session: UserSession = Depends(require_session)):
    """
    Get the identity bound to the current session.
    """
    return _session_user(session)
