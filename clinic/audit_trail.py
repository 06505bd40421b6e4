import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from . import crud, models
from .clock import Clock
from .models import AuditAction
from .results import ErrorKind, Success, SystemFailure


@dataclass
class AuditPage:
	entries: List[models.AuditLog]
	page: int
	page_size: int
	total: int

	@property
	def total_pages(self) -> int:
		return math.ceil(self.total / self.page_size) if self.total else 0


class AuditTrail:
	"""Append-only audit trail stored in the audit_logs table.

	Writes are best-effort: a failure is logged locally and reported as
	False, never raised into the operation being audited.
	"""

	def __init__(self, db: Session, clock: Clock, page_size: int = 50):
		self.db = db
		self.clock = clock
		self.page_size = page_size
		self.logger = logging.getLogger(__name__)

	def record(
		self,
		user_id: Optional[int],
		username: Optional[str],
		action: Union[AuditAction, str],
		description: str,
		ip_address: Optional[str] = None,
	) -> bool:
		action_tag = action.value if isinstance(action, AuditAction) else str(action).upper()
		try:
			crud.insert_audit_log(
				self.db,
				user_id=user_id or 0,
				username=username or "anonymous",
				action=action_tag,
				description=(description or "")[:2000],
				ip_address=ip_address or "Unknown",
				created_at=self.clock(),
			)
			return True
		except crud.CRUDError as e:
			self.logger.error(f"Audit logging failed for {action_tag} by {username}: {e}")
			return False

	def page(self, page: int = 1, action: Optional[str] = None) -> Union[Success[AuditPage], SystemFailure]:
		"""One page of entries, newest first, with the total count for page math."""
		page = max(1, page)
		try:
			total = crud.count_audit_logs(self.db, action=action)
			entries = crud.get_audit_logs(
				self.db, skip=(page - 1) * self.page_size, limit=self.page_size, action=action
			)
		except crud.CRUDError:
			return SystemFailure(ErrorKind.STORE_UNAVAILABLE)
		return Success(AuditPage(entries=entries, page=page, page_size=self.page_size, total=total))
