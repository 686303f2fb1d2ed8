"""
api/routes/audit.py -- Read-only query surface over the audit log.

Routes:
  GET /api/audit-logs  -- newest-first audit records (admin only)

Filters: userId, actionType (LOGIN | REGISTER | AUDIT_QUERY), status
(success | failure), limit (1..500, default 100).

Reading the audit log is itself security-relevant: every query is recorded
as AUDIT_QUERY, and a non-admin caller is recorded as a failure with reason
"forbidden" before the 403 goes out. There is no write, update or delete
endpoint.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.limiter import enforce_general_limit
from api.models import AuditListResponse, AuditRecordResponse
from api.routes.auth import request_origin
from auth.audit import AuditRecorder
from auth.dependencies import ADMIN_ROLE, get_current_user
from auth.models import ActionStatus, ActionType, AuditEvent, FailureReason, UserCredential

router = APIRouter(dependencies=[Depends(enforce_general_limit)])


@router.get("/audit-logs", response_model=AuditListResponse, response_model_by_alias=True)
def list_audit_logs(
    request: Request,
    user_id: Annotated[Optional[int], Query(alias="userId")] = None,
    action_type: Annotated[Optional[ActionType], Query(alias="actionType")] = None,
    status: Optional[ActionStatus] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    current_user: UserCredential = Depends(get_current_user),
) -> AuditListResponse:
    """List audit records. Admin only."""
    recorder: AuditRecorder = request.app.state.audit_recorder
    origin = request_origin(request)
    filters = {
        "userId": user_id,
        "actionType": action_type.value if action_type else None,
        "status": status.value if status else None,
        "limit": limit,
    }
    filters = {k: v for k, v in filters.items() if v is not None}

    if current_user.role_name != ADMIN_ROLE:
        recorder.record(
            AuditEvent(
                action_type=ActionType.AUDIT_QUERY,
                status=ActionStatus.FAILURE,
                user_id=current_user.id,
                ip_address=origin.ip_address,
                user_agent=origin.user_agent,
                details={"reason": FailureReason.FORBIDDEN.value, **filters},
            )
        )
        raise HTTPException(status_code=403, detail="Admin access required")

    records = recorder.list_records(user_id=user_id, action_type=action_type, status=status, limit=limit)
    recorder.record(
        AuditEvent(
            action_type=ActionType.AUDIT_QUERY,
            status=ActionStatus.SUCCESS,
            user_id=current_user.id,
            ip_address=origin.ip_address,
            user_agent=origin.user_agent,
            details=filters,
        )
    )
    return AuditListResponse(records=[AuditRecordResponse.from_record(r) for r in records])
