"""KYC status reader backed by the users table.

The KYC provider's webhooks/sync jobs keep ``users.kyc_status`` and
``users.kyc2_status`` current; the transaction lifecycle only reads them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from property_clearinghouse.domain.enums import KycStatus
from property_clearinghouse.domain.exceptions import NotFoundError
from property_clearinghouse.domain.ports import KycSnapshot
from property_clearinghouse.infrastructure.database.repositories import UserRepository

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession


class DatabaseKycStatusReader:
    """Reads tier statuses straight from persisted user rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._users = UserRepository(session)

    async def get_status(self, user_id: uuid.UUID) -> KycSnapshot:
        user = await self._users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("user", str(user_id))
        return KycSnapshot(
            user_id=user.id,
            tier1=KycStatus(user.kyc_status),
            tier2=KycStatus(user.kyc2_status),
        )
