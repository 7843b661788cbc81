"""Repository layer.

Provides data access abstractions for all domain entities.
Each repository is self-contained and bound to one session.
"""

from lumina.repositories.generation import GenerationJobRepository
from lumina.repositories.user import UserRepository

__all__ = [
    "GenerationJobRepository",
    "UserRepository",
]
