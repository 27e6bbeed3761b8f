"""
Contract status transitions.

Moving a contract into "paid" credits the member's BC balance and leaves a
contract_paid notification. The status UPDATE itself is picked up by change
capture and drives the browser "contract paid" alert.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Contract, ContractStatus, NotificationType, Profile
from .notifications import NotificationStore

logger = logging.getLogger(__name__)

CONTRACT_PAYOUT_BC = 200


class ContractError(Exception):
    """Base exception for contract operations."""
    pass


class ContractNotFoundError(ContractError):
    """Contract does not exist."""
    pass


class ContractService:
    """Admin-side contract status changes."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.notifications = NotificationStore(session)

    async def set_status(self, contract_id: int, status: ContractStatus | str) -> Contract:
        """Change a contract's status, paying out on a transition into paid."""
        status = ContractStatus(status)
        contract = await self.session.get(Contract, contract_id)
        if contract is None:
            raise ContractNotFoundError(f"Contract {contract_id} not found")

        previous = contract.status
        contract.status = status
        contract.notified = status == ContractStatus.PAID

        if status == ContractStatus.PAID and previous != ContractStatus.PAID:
            await self._pay_out(contract)

        await self.session.flush()
        logger.info(f"Contract {contract_id} status {previous.value} -> {status.value}")
        return contract

    async def _pay_out(self, contract: Contract) -> None:
        result = await self.session.execute(
            select(Profile).where(Profile.id == contract.user_id)
        )
        profile = result.scalar_one_or_none()
        if profile is not None:
            profile.bc_balance = (profile.bc_balance or 0) + CONTRACT_PAYOUT_BC

        await self.notifications.create(
            user_id=contract.user_id,
            title="Контракт виплачено! 💰",
            message=f"Ваш контракт на суму {contract.amount:,} виплачено! +{CONTRACT_PAYOUT_BC} BC",
            type=NotificationType.CONTRACT_PAID,
        )
