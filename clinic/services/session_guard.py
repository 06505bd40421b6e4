# clinic/services/session_guard.py
import enum
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from ..audit_trail import AuditTrail
from ..clock import Clock
from ..context import RequestContext
from ..models import AuditAction
from ..sessions import UserSession

logger = logging.getLogger("security")


class DenyReason(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    TIMED_OUT = "timed_out"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Allow:
    session: UserSession


@dataclass(frozen=True)
class Deny:
    reason: DenyReason
    message: str = "Access denied."


GuardResult = Union[Allow, Deny]


class SessionGuard:
    """Inactivity timeout and role gate run at the top of every protected request.

    An allowed call slides ``last_activity`` forward. A session idle for more
    than ``timeout_seconds`` is destroyed before the denial is returned.
    """

    def __init__(self, session_store, audit: AuditTrail, clock: Clock, timeout_seconds: int = 900):
        self.session_store = session_store
        self.audit = audit
        self.clock = clock
        self.timeout_seconds = timeout_seconds

    def guard(self, ctx: RequestContext, roles: Optional[Sequence[str]] = None) -> GuardResult:
        session = ctx.session
        if session is None or not session.authenticated:
            return self._deny(ctx, DenyReason.UNAUTHENTICATED, 0, "anonymous", "Unauthorized access attempt")

        now = self.clock()
        if session.last_activity is None:
            session = session.model_copy(update={"last_activity": now})
        elif (now - session.last_activity).total_seconds() > self.timeout_seconds:
            self.session_store.destroy(session.session_id)
            logger.info(f"Session for '{session.username}' expired after inactivity")
            return self._deny(ctx, DenyReason.TIMED_OUT, session.user_id, session.username, "Session timed out on access")
        else:
            session = session.model_copy(update={"last_activity": now})

        self.session_store.save(session)
        ctx.session = session

        if roles and session.role not in roles:
            return self._deny(
                ctx, DenyReason.FORBIDDEN, session.user_id, session.username,
                f"Role '{session.role}' denied access",
            )
        return Allow(session)

    def _deny(self, ctx: RequestContext, reason: DenyReason, user_id, username, summary: str) -> Deny:
        description = (
            f"{summary} to: {ctx.path or 'unknown'} - User Agent: {(ctx.user_agent or 'unknown')[:100]} - IP: {ctx.ip_address}"
        )
        self.audit.record(user_id or 0, username or "anonymous", AuditAction.ACCESS_DENIED, description, ctx.ip_address)
        logger.warning(f"Access denied ({reason.value}) for '{username}' to {ctx.path}")
        return Deny(reason)
