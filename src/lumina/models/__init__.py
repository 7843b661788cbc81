"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from lumina.models.generation import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    GenerationJob,
    GenerationStatus,
    InvalidStateTransition,
)
from lumina.models.user import UNLIMITED_CREDITS, UserAccount

__all__ = [
    "UserAccount",
    "UNLIMITED_CREDITS",
    "GenerationJob",
    "GenerationStatus",
    "InvalidStateTransition",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
]
