"""UserAccount repository.

The credit balance is only ever changed through single conditional UPDATE
statements, never by read-modify-write in Python.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lumina.core.timezone import utcnow
from lumina.models.user import UserAccount


class UserRepository:
    """Repository for UserAccount entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, user: UserAccount) -> UserAccount:
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_by_id(self, user_id: UUID) -> UserAccount | None:
        """Retrieve user account by UUID.

        Args:
            user_id: User's unique identifier (same as the identity provider id)

        Returns:
            UserAccount if found, None otherwise
        """
        result = await self.session.execute(
            select(UserAccount).where(UserAccount.id == user_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def charge(self, user_id: UUID, cost: Decimal) -> Decimal | None:
        """Atomically deduct cost and count one generation.

        Query:
            UPDATE users
            SET credits = credits - :cost, total_generations = total_generations + 1,
                last_generation_at = now()
            WHERE id = :user_id AND credits >= :cost
            RETURNING credits

        Args:
            user_id: Account to charge
            cost: Amount to deduct

        Returns:
            Remaining balance, or None if the account is missing or the balance is too low
        """
        now = utcnow()
        result = await self.session.execute(
            update(UserAccount)
            .where(UserAccount.id == user_id)  # type: ignore[arg-type]
            .where(UserAccount.credits >= cost)  # type: ignore[arg-type]
            .values(
                credits=UserAccount.credits - cost,
                total_generations=UserAccount.total_generations + 1,
                last_generation_at=now,
                updated_at=now,
            )
            .returning(UserAccount.credits)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def record_generation(self, user_id: UUID) -> bool:
        """Count one generation without touching the balance (privileged accounts).

        Returns:
            True if the account exists
        """
        now = utcnow()
        result = await self.session.execute(
            update(UserAccount)
            .where(UserAccount.id == user_id)  # type: ignore[arg-type]
            .values(
                total_generations=UserAccount.total_generations + 1,
                last_generation_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def refund(self, user_id: UUID, amount: Decimal) -> Decimal | None:
        """Atomically credit amount back to the account.

        Returns:
            New balance, or None if the account does not exist
        """
        result = await self.session.execute(
            update(UserAccount)
            .where(UserAccount.id == user_id)  # type: ignore[arg-type]
            .values(credits=UserAccount.credits + amount, updated_at=utcnow())
            .returning(UserAccount.credits)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()
