"""
Audit log endpoints.

Reads are gated by security.view (export by security.export) in the
company being read. There are no write, update or delete routes.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from access_core.container import Services
from access_core.types.tenancy import AuditLogQuery, AuditStatus, utc_now
from app.dependencies import get_actor_id, get_services_dependency
from app.models import AuditLogsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tenants/{tenant_id}/audit", tags=["audit"])


def get_audit_filters(
    actor: Optional[str] = Query(default=None, description="Filter by acting user ID"),
    action: Optional[str] = Query(default=None),
    resource: Optional[str] = Query(default=None),
    resource_id: Optional[str] = Query(default=None),
    status: Optional[AuditStatus] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
) -> AuditLogQuery:
    return AuditLogQuery(
        actor_id=actor,
        action=action,
        resource=resource,
        resource_id=resource_id,
        status=status,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )


@router.get(
    "",
    response_model=AuditLogsResponse,
    summary="Query audit log",
    description="Entries for this company, most recent first.",
)
async def query_audit_log(
    tenant_id: str,
    filters: AuditLogQuery = Depends(get_audit_filters),
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services_dependency),
) -> AuditLogsResponse:
    entries = await services.audit.query(tenant_id, filters, actor_id)
    total = await services.audit.count(tenant_id, filters, actor_id)
    page_limit = min(filters.limit or services.audit.default_limit, services.audit.max_limit)
    return AuditLogsResponse(
        entries=entries,
        total=total,
        limit=page_limit,
        offset=filters.offset,
    )


@router.get("/export", summary="Export audit log as CSV")
async def export_audit_log(
    tenant_id: str,
    filters: AuditLogQuery = Depends(get_audit_filters),
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services_dependency),
) -> Response:
    csv_data = await services.audit.export_csv(tenant_id, filters, actor_id)
    filename = f"audit-log-{tenant_id}-{utc_now().strftime('%Y%m%d')}.csv"
    return Response(
        content=csv_data,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
