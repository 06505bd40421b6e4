# clinic/services/authenticator.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from .. import crud
from ..audit_trail import AuditTrail
from ..context import RequestContext
from ..models import AuditAction
from ..results import ErrorKind, Success, SystemFailure
from ..security import dummy_verify, is_printable_username, verify_password
from ..sessions import SessionStoreUnavailable, UserSession
from .directory import CredentialStore
from .ledger import LoginAttemptLedger, LOCKOUT_THRESHOLD

logger = logging.getLogger("security")

LOCKED_MESSAGE = "Account temporarily locked due to multiple failed login attempts."
INVALID_MESSAGE = "Invalid username or password."


@dataclass(frozen=True)
class LoginOutcome:
    success: bool
    message: str
    role: Optional[str] = None
    session: Optional[UserSession] = None
    locked: bool = False
    lockout_until: Optional[datetime] = None
    attempts: int = 0

    @property
    def remaining_attempts(self) -> int:
        return max(0, LOCKOUT_THRESHOLD - self.attempts)

    @property
    def attempt_message(self) -> Optional[str]:
        if self.success or self.locked or not self.attempts or not self.remaining_attempts:
            return None
        return f"{self.remaining_attempts} attempt(s) remaining before temporary lockout."


class Authenticator:
    """Username/password login with progressive lockout.

    Expected failures (bad credentials, lockout) come back as an unsuccessful
    ``LoginOutcome``; only an unreachable store yields ``SystemFailure``.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        ledger: LoginAttemptLedger,
        audit: AuditTrail,
        session_store,
        clock,
    ):
        self.credentials = credentials
        self.ledger = ledger
        self.audit = audit
        self.session_store = session_store
        self.clock = clock

    def login(self, username: str, password: str, ctx: RequestContext) -> Union[Success[LoginOutcome], SystemFailure]:
        if not is_printable_username(username):
            # Same cost as a real check so the response does not leak the fast path
            dummy_verify()
            logger.warning(f"Rejected login with malformed username {username!r} from {ctx.ip_address}")
            self.audit.record(
                0, "anonymous", AuditAction.LOGIN_FAILED,
                f"Failed login attempt - Malformed username: {username!r}",
                ctx.ip_address,
            )
            return Success(LoginOutcome(success=False, message=INVALID_MESSAGE))

        try:
            lockout = self.ledger.check_lockout(username)
            if lockout:
                logger.info(f"Login refused for locked username '{username}' until {lockout.lockout_until}")
                return Success(LoginOutcome(
                    success=False,
                    message=LOCKED_MESSAGE,
                    locked=True,
                    lockout_until=lockout.lockout_until,
                    attempts=lockout.attempt_count,
                ))

            user = self.credentials.get_user_by_username(username)
            if user is None:
                dummy_verify()
            elif verify_password(password, user.password_hash):
                return Success(self._establish_session(user, ctx))

            return Success(self._reject(username, ctx))
        except (crud.CRUDError, SessionStoreUnavailable) as e:
            logger.error(f"Login for '{username}' failed on the credential store: {e}")
            return SystemFailure(ErrorKind.STORE_UNAVAILABLE)

    def _establish_session(self, user, ctx: RequestContext) -> LoginOutcome:
        self.ledger.record_attempt(ctx.ip_address, user.username, True)

        now = self.clock()
        role = user.role.value if hasattr(user.role, "value") else str(user.role)
        session = ctx.session or self.session_store.create()
        session = session.model_copy(update={
            "authenticated": True,
            "user_id": user.id,
            "username": user.username,
            "role": role,
            "login_time": now,
            "last_activity": now,
        })
        # New identifier on privilege change
        session = self.session_store.regenerate(session)

        self.audit.record(user.id, user.username, AuditAction.LOGIN, "User logged in successfully", ctx.ip_address)
        logger.info(f"User '{user.username}' logged in from {ctx.ip_address}")
        return LoginOutcome(success=True, message="Login successful.", role=role, session=session)

    def _reject(self, username: str, ctx: RequestContext) -> LoginOutcome:
        result = self.ledger.record_attempt(ctx.ip_address, username, False)
        self.audit.record(
            0,
            username,
            AuditAction.LOGIN_FAILED,
            f"Failed login attempt - Invalid credentials for username: {username} - Attempts: {result.attempts}",
            ctx.ip_address,
        )
        logger.warning(f"Failed login for '{username}' from {ctx.ip_address} (attempt {result.attempts})")
        return LoginOutcome(
            success=False,
            message=LOCKED_MESSAGE if result.locked else INVALID_MESSAGE,
            locked=result.locked,
            lockout_until=result.lockout_until,
            attempts=result.attempts,
        )

    def logout(self, ctx: RequestContext) -> None:
        session = ctx.session
        if session is None:
            return
        if session.authenticated and session.user_id:
            self.audit.record(session.user_id, session.username, AuditAction.LOGOUT, "User logged out", ctx.ip_address)
            logger.info(f"User '{session.username}' logged out")
        self.session_store.destroy(session.session_id)
