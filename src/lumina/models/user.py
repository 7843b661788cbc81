"""UserAccount entity - credits projection over an externally managed user account."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from lumina.core.timezone import utcnow

# Reported balance for privileged accounts
UNLIMITED_CREDITS = Decimal("-1")


class UserAccount(SQLModel, table=True):
    """UserAccount holds the credit balance and generation counters of a user.

    Identity (email/password, sessions) lives with the external identity provider;
    the id matches the provider's user id.
    """

    __tablename__ = "users"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(max_length=254, unique=True, index=True)
    full_name: Optional[str] = Field(default=None, max_length=100)
    is_admin: bool = Field(default=False)
    credits: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2, ge=0)
    total_generations: int = Field(default=0, ge=0)
    last_generation_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
