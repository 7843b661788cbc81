"""Credit ledger: balance checks, atomic charges and refunds.

All operations run inside the caller's Unit of Work so a charge commits or rolls
back together with the job it pays for.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from lumina.models.user import UNLIMITED_CREDITS
from lumina.services.exceptions import InsufficientCreditsError, UserNotFoundError
from lumina.uow import UnitOfWork

logger = structlog.get_logger(__name__)


@dataclass
class ChargeResult:
    """Outcome of a successful check-and-charge.

    Attributes:
        cost: Amount recorded against the job (also for privileged accounts)
        charged: False when the account is privileged and the balance was untouched
        remaining: Balance after the charge (UNLIMITED_CREDITS for privileged accounts)
    """

    cost: Decimal
    charged: bool
    remaining: Decimal


@dataclass
class UserCredits:
    """Credits projection of a user account."""

    user_id: UUID
    credits: Decimal
    is_admin: bool
    total_generations: int
    last_generation_at: Optional[datetime]


class CreditLedger:
    """Stateless credit operations over the users table."""

    async def check_and_charge(self, uow: UnitOfWork, user_id: UUID, cost: Decimal) -> ChargeResult:
        """Deduct cost from the user's balance, or fail without side effects.

        Privileged accounts always pass and are never charged; their generation
        counter is still advanced.

        Raises:
            UserNotFoundError: Unknown user
            InsufficientCreditsError: Balance lower than cost
        """
        user = await uow.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError()

        if user.is_admin:
            await uow.users.record_generation(user_id)
            logger.info("credits.admin_exempt", user_id=str(user_id), cost=str(cost))
            return ChargeResult(cost=cost, charged=False, remaining=UNLIMITED_CREDITS)

        remaining = await uow.users.charge(user_id, cost)
        if remaining is None:
            logger.info(
                "credits.insufficient",
                user_id=str(user_id),
                cost=str(cost),
                balance=str(user.credits),
            )
            raise InsufficientCreditsError(
                f"Not enough credits: {cost} required, {user.credits} available"
            )

        logger.info("credits.charged", user_id=str(user_id), cost=str(cost), remaining=str(remaining))
        return ChargeResult(cost=cost, charged=True, remaining=remaining)

    async def refund(self, uow: UnitOfWork, user_id: UUID, amount: Decimal) -> Decimal:
        """Credit amount back to the user.

        Raises:
            UserNotFoundError: Unknown user
        """
        balance = await uow.users.refund(user_id, amount)
        if balance is None:
            raise UserNotFoundError()
        logger.info("credits.refunded", user_id=str(user_id), amount=str(amount), balance=str(balance))
        return balance

    async def get_user_credits(self, uow: UnitOfWork, user_id: UUID) -> UserCredits:
        """Read the credits projection; privileged accounts report UNLIMITED_CREDITS.

        Raises:
            UserNotFoundError: Unknown user
        """
        user = await uow.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError()
        return UserCredits(
            user_id=user.id,
            credits=UNLIMITED_CREDITS if user.is_admin else user.credits,
            is_admin=user.is_admin,
            total_generations=user.total_generations,
            last_generation_at=user.last_generation_at,
        )
