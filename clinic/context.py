from dataclasses import dataclass
from typing import Optional

from .sessions import UserSession


@dataclass
class RequestContext:
    """Who is acting and from where, threaded through every service call."""

    ip_address: str
    path: str = ""
    user_agent: str = ""
    session: Optional[UserSession] = None

    @property
    def actor_id(self) -> int:
        if self.session and self.session.authenticated and self.session.user_id:
            return self.session.user_id
        return 0

    @property
    def actor_name(self) -> str:
        if self.session and self.session.authenticated and self.session.username:
            return self.session.username
        return "anonymous"
