import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from helaloans.core.errors import ConflictError, NotFoundError
from helaloans.schemas.support_schema import SupportRequestData, SupportStatusEnum
from helaloans.services.stores import SupportStore, MongoSupportStore

logger = logging.getLogger(__name__)


class SupportService:
    """Borrower help requests and the staff replies that resolve them."""

    def __init__(self, store: SupportStore):
        self.store = store

    async def submit_request(self, user: Dict[str, Any], message: str) -> SupportRequestData:
        request = SupportRequestData(
            request_id=str(uuid4()),
            user_id=user["id"],
            user_name=user.get("full_name") or user["email"],
            user_email=user["email"],
            message=message,
        )
        created = await self.store.create(request)
        logger.info(f"Support request {created.request_id} opened by {user['email']}")
        return created

    async def list_user_requests(self, user: Dict[str, Any]) -> List[SupportRequestData]:
        return await self.store.list_requests(user_id=user["id"])

    async def list_requests(self, status: Optional[SupportStatusEnum] = None) -> List[SupportRequestData]:
        return await self.store.list_requests(status=status)

    # A request is answered once; the reply resolves it
    async def reply(self, request_id: str, reply: str, admin: Dict[str, Any]) -> SupportRequestData:
        resolved = await self.store.resolve(request_id, reply, admin["email"])
        if resolved is not None:
            logger.info(f"Support request {request_id} resolved by {admin['email']}")
            return resolved

        existing = await self.store.get(request_id)
        if existing is None:
            raise NotFoundError("Support request not found")
        raise ConflictError("Support request has already been resolved")

    async def count_pending(self) -> int:
        return await self.store.count_pending()


support_service = SupportService(MongoSupportStore())
