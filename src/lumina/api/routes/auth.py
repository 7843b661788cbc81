"""Authentication API endpoints.

- POST /api/auth/login - Email/password sign-in through the identity provider

Failed attempts are counted per normalized email; after RATE_LIMIT_MAX_ATTEMPTS
the email is blocked for RATE_LIMIT_BLOCK_SECONDS and the endpoint answers 429
with the remaining wait in the message.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from lumina.api.dependencies import get_auth_service
from lumina.services.auth import AuthService

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=1024)


class LoginResponse(BaseModel):
    user_id: UUID
    email: str
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str = "bearer"


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """Sign in with email and password.

    Raises:
        400: Malformed email or empty password
        401: Credentials rejected (code tells why)
        429: Too many failed attempts
        503: Identity provider unavailable
    """
    session = await auth_service.login(request.email, request.password)
    return LoginResponse(
        user_id=session.user_id,
        email=session.email,
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_in=session.expires_in,
    )
