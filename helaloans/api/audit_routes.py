from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional, Dict, Any
from datetime import datetime, timezone
import logging

from helaloans.core.auth_dependencies import get_admin_user
from helaloans.services.audit_service import audit_service

router = APIRouter(prefix="/audits", tags=["Audits"])

logger = logging.getLogger(__name__)


def _parse_day(value: str, field: str, end_of_day: bool = False) -> datetime:
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {field} format, expected YYYY-MM-DD")
    if end_of_day:
        parsed = parsed.replace(hour=23, minute=59, second=59, microsecond=999999)
    return parsed


@router.get("/", status_code=200)
async def list_audits(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=1000),
    action: Optional[str] = Query(default=None),
    actor: Optional[str] = Query(default=None),
    acted: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    start_date: Optional[str] = Query(default=None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(default=None, description="YYYY-MM-DD"),
    admin: Dict = Depends(get_admin_user)
):
    filters: Dict[str, Any] = {"action": action, "actor": actor, "acted": acted, "status": status}
    if start_date:
        filters["start_date"] = _parse_day(start_date, "start_date")
    if end_date:
        filters["end_date"] = _parse_day(end_date, "end_date", end_of_day=True)

    try:
        return await audit_service.get_audits(skip=skip, limit=limit, filters=filters)
    except Exception as e:
        logger.error(f"Error listing audits: {e}")
        raise HTTPException(status_code=500, detail="Failed to list audit logs")
