# clinic/routers/logs.py
from typing import Optional

from fastapi import APIRouter, Depends, Query

from .. import schemas
from ..audit_trail import AuditTrail
from ..context import RequestContext
from ..dependencies import error_response, get_audit_trail, get_request_context, require_admin
from ..models import AuditAction
from ..results import SystemFailure

router = APIRouter(
    tags=["Logs"],
    dependencies=[Depends(require_admin)],
)


@router.get("/logs", response_model=schemas.AuditLogPage)
def read_audit_logs(
    page: int = Query(1, ge=1),
    action: Optional[str] = None,
    audit: AuditTrail = Depends(get_audit_trail),
    ctx: RequestContext = Depends(get_request_context),
):
    """
    One page of the audit trail, newest first.
    Only accessible by administrators.
    """
    result = audit.page(page, action=action.upper() if action else None)
    if isinstance(result, SystemFailure):
        audit.record(ctx.actor_id, ctx.actor_name, AuditAction.READ_FAILED, "Failed to load audit logs", ctx.ip_address)
        return error_response(result)

    audit_page = result.value
    return schemas.AuditLogPage(
        entries=[schemas.AuditLogResponse.model_validate(entry) for entry in audit_page.entries],
        page=audit_page.page,
        page_size=audit_page.page_size,
        total=audit_page.total,
        total_pages=audit_page.total_pages,
    )
