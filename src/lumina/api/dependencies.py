"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Application settings and Unit of Work factory
- Services owned by the application lifespan (stored on app.state)
- Bearer token authentication through the identity provider
"""

from typing import Annotated, Callable
from uuid import UUID

from fastapi import Depends, Header, Request

from lumina.core.config import Settings
from lumina.services.auth import AuthService
from lumina.services.exceptions import AuthenticationError
from lumina.services.generation import GenerationService
from lumina.services.identity import IdentityClient
from lumina.uow import UnitOfWork


def get_settings(request: Request) -> Settings:
    """Get application settings instance created in the lifespan.

    Returns:
        Settings stored on app.state
    """
    return request.app.state.settings


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.generations.get_by_id(job_id)
    """
    return request.app.state.uow_factory


def get_generation_service(request: Request) -> GenerationService:
    return request.app.state.generation_service


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_identity_client(request: Request) -> IdentityClient:
    return request.app.state.identity_client


async def get_current_user_id(
    authorization: Annotated[str | None, Header()] = None,
    identity: IdentityClient = Depends(get_identity_client),
) -> UUID:
    """Resolve the caller from an ``Authorization: Bearer <token>`` header.

    Raises:
        AuthenticationError: Header missing/malformed or token rejected by the provider
    """
    if not authorization:
        raise AuthenticationError("Missing Authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authorization header must be a Bearer token")

    return await identity.get_user_id(token.strip())
