"""External identity provider client (Supabase Auth REST API).

Accounts, passwords and sessions live with the identity provider. This client
only exchanges credentials for a session and resolves bearer tokens to user ids.

Error mapping uses the provider's structured ``error_code`` first and falls back
to matching the message text for older API versions.
"""

from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

import httpx
import structlog

from lumina.services.exceptions import (
    AccountNotFoundError,
    AuthenticationError,
    EmailNotConfirmedError,
    IdentityProviderError,
    InvalidCredentialsError,
)

logger = structlog.get_logger()

REQUEST_TIMEOUT_SECONDS = 10.0

ERROR_CODE_MAP: dict[str, type[AuthenticationError]] = {
    "invalid_credentials": InvalidCredentialsError,
    "invalid_grant": InvalidCredentialsError,
    "email_not_confirmed": EmailNotConfirmedError,
    "user_not_found": AccountNotFoundError,
}


@dataclass
class IdentitySession:
    """Session issued by the identity provider after a successful sign-in."""

    user_id: UUID
    email: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


def map_auth_error(payload: dict[str, Any]) -> AuthenticationError:
    """Translate an identity provider error payload into an AuthenticationError."""
    code = payload.get("error_code") or payload.get("code") or payload.get("error")
    if isinstance(code, str) and code in ERROR_CODE_MAP:
        return ERROR_CODE_MAP[code]()

    message = str(
        payload.get("msg") or payload.get("error_description") or payload.get("message") or ""
    ).lower()
    if "invalid login credentials" in message:
        return InvalidCredentialsError()
    if "email not confirmed" in message:
        return EmailNotConfirmedError()
    if "user not found" in message:
        return AccountNotFoundError()
    return AuthenticationError()


def _json(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


class IdentityClient:
    """Thin client for password sign-in and token verification."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"apikey": anon_key, "Content-Type": "application/json"}
        self._client = client

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = self._client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)
        try:
            return await client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            logger.error("identity.request_failed", path=path, error=str(e))
            raise IdentityProviderError() from e
        finally:
            if self._client is None:
                await client.aclose()

    async def sign_in(self, email: str, password: str) -> IdentitySession:
        """Exchange email and password for a session.

        Raises:
            AuthenticationError: Credentials rejected (subclass tells why)
            IdentityProviderError: Provider unreachable or answered with 5xx
        """
        response = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            headers=self.headers,
            json={"email": email, "password": password},
        )
        payload = _json(response)

        if response.status_code >= 500:
            raise IdentityProviderError()
        if response.status_code >= 400:
            raise map_auth_error(payload)

        try:
            user = payload["user"]
            return IdentitySession(
                user_id=UUID(user["id"]),
                email=user.get("email", email),
                access_token=payload["access_token"],
                refresh_token=payload.get("refresh_token"),
                expires_in=payload.get("expires_in"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise IdentityProviderError("Unexpected response from identity provider") from e

    async def get_user_id(self, access_token: str) -> UUID:
        """Resolve a bearer token to the provider's user id.

        Raises:
            AuthenticationError: Token invalid or expired
            IdentityProviderError: Provider unreachable or answered with 5xx
        """
        response = await self._request(
            "GET",
            "/auth/v1/user",
            headers={**self.headers, "Authorization": f"Bearer {access_token}"},
        )
        if response.status_code >= 500:
            raise IdentityProviderError()
        if response.status_code >= 400:
            raise AuthenticationError("Invalid or expired session")

        try:
            return UUID(_json(response)["id"])
        except (KeyError, ValueError) as e:
            raise IdentityProviderError("Unexpected response from identity provider") from e
