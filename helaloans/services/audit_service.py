import logging
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone

from helaloans.database.models.audit_log_model import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Simple service to create and read audit logs stored in MongoDB using Beanie."""

    async def create_audit(self, *, action: str, actor: Optional[str] = None, acted: Optional[str] = None, status: str = "successful", timestamp: Optional[datetime] = None) -> AuditLog:
        payload = {
            "action": action,
            "actor": actor,
            "acted": acted,
            "status": status,
            "timestamp": timestamp or datetime.now(timezone.utc)
        }
        try:
            audit = AuditLog(**payload)
            await audit.insert()
            return audit
        except Exception as e:
            logger.error(f"Failed to create audit log (payload={payload}): {e}")
            raise

    # Best-effort audit from request handlers; a failed write never fails the request
    async def record(self, action: str, actor: Optional[str], acted: Optional[str] = None, status: str = "successful") -> None:
        try:
            await self.create_audit(action=action, actor=actor, acted=acted, status=status)
        except Exception:
            logger.exception("Failed to write %s audit log", action)

    async def get_audits(self, skip: int = 0, limit: int = 50, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        query = {}
        if filters:
            for key in ("action", "actor", "acted", "status"):
                if filters.get(key):
                    query[key] = filters[key]
            ts_query = {}
            if filters.get("start_date"):
                ts_query["$gte"] = filters["start_date"]
            if filters.get("end_date"):
                ts_query["$lte"] = filters["end_date"]
            if ts_query:
                query["timestamp"] = ts_query

        try:
            total = await AuditLog.find(query).count()
            docs = await AuditLog.find(query).sort("-timestamp").skip(skip).limit(limit).to_list()
        except Exception as e:
            logger.error(f"Failed to query audit logs: {e}")
            raise

        results: List[Dict[str, Any]] = []
        for d in docs:
            results.append({
                "id": str(d.id),
                "action": d.action,
                "actor": d.actor,
                "acted": d.acted,
                "timestamp": d.timestamp.isoformat() if d.timestamp else None,
                "status": d.status,
            })

        return {"data": results, "total": total, "skip": skip, "limit": limit}


audit_service = AuditService()
