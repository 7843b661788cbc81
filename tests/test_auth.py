"""Login flow tests: identity client error mapping and attempt throttling."""

from uuid import uuid4

import httpx
import pytest

from lumina.services.auth import AuthService, normalize_email
from lumina.services.exceptions import (
    AccountNotFoundError,
    AuthenticationError,
    EmailNotConfirmedError,
    IdentityProviderError,
    InvalidCredentialsError,
    RateLimitExceededError,
    ValidationError,
)
from lumina.services.identity import IdentityClient, map_auth_error
from lumina.services.rate_limiter import RateLimiter

BASE_URL = "https://project.supabase.test"
USER_ID = uuid4()


def session_payload(email="fox@example.com"):
    return {
        "access_token": "access-123",
        "refresh_token": "refresh-456",
        "expires_in": 3600,
        "user": {"id": str(USER_ID), "email": email},
    }


def make_identity(handler) -> IdentityClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return IdentityClient(BASE_URL, "anon-key", client=client)


class Clock:
    def __init__(self):
        self.now = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def limiter() -> RateLimiter:
    return RateLimiter(max_attempts=5, clock=Clock())


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"error_code": "invalid_credentials", "msg": "x"}, InvalidCredentialsError),
        ({"error": "invalid_grant"}, InvalidCredentialsError),
        ({"error_code": "email_not_confirmed"}, EmailNotConfirmedError),
        ({"code": "user_not_found"}, AccountNotFoundError),
        ({"msg": "Invalid login credentials"}, InvalidCredentialsError),
        ({"error_description": "Email not confirmed"}, EmailNotConfirmedError),
        ({"msg": "something else"}, AuthenticationError),
        ({}, AuthenticationError),
    ],
)
def test_map_auth_error(payload, expected):
    assert type(map_auth_error(payload)) is expected


@pytest.mark.parametrize(
    "email, normalized",
    [("  Fox@Example.COM ", "fox@example.com"), ("a@b.co", "a@b.co")],
)
def test_normalize_email(email, normalized):
    assert normalize_email(email) == normalized


@pytest.mark.parametrize("email", ["", "   ", "no-at-sign", "a@b", "a b@c.d"])
def test_normalize_email_rejects_malformed(email):
    with pytest.raises(ValidationError):
        normalize_email(email)


@pytest.mark.asyncio
async def test_sign_in_returns_session():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=session_payload())

    identity = make_identity(handler)

    session = await identity.sign_in("fox@example.com", "hunter22")

    assert session.user_id == USER_ID
    assert session.access_token == "access-123"
    assert session.expires_in == 3600
    [request] = seen
    assert request.url.path == "/auth/v1/token"
    assert request.url.params["grant_type"] == "password"
    assert request.headers["apikey"] == "anon-key"


@pytest.mark.asyncio
async def test_sign_in_maps_provider_5xx():
    identity = make_identity(lambda request: httpx.Response(503, text="down"))

    with pytest.raises(IdentityProviderError):
        await identity.sign_in("fox@example.com", "hunter22")


@pytest.mark.asyncio
async def test_sign_in_maps_network_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    identity = make_identity(handler)

    with pytest.raises(IdentityProviderError):
        await identity.sign_in("fox@example.com", "hunter22")


@pytest.mark.asyncio
async def test_get_user_id_resolves_bearer_token():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.headers.get("authorization") == "Bearer good":
            return httpx.Response(200, json={"id": str(USER_ID)})
        return httpx.Response(401, json={"msg": "invalid JWT"})

    identity = make_identity(handler)

    assert await identity.get_user_id("good") == USER_ID
    with pytest.raises(AuthenticationError, match="expired"):
        await identity.get_user_id("bad")


@pytest.mark.asyncio
async def test_login_success_clears_attempts(limiter):
    identity = make_identity(lambda request: httpx.Response(200, json=session_payload()))
    service = AuthService(identity, limiter)

    session = await service.login("  FOX@example.com", "hunter22")

    assert session.user_id == USER_ID
    assert limiter.attempt_count("fox@example.com") == 0


@pytest.mark.asyncio
async def test_failed_logins_are_throttled(limiter):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, json={"error_code": "invalid_credentials"})

    service = AuthService(make_identity(handler), limiter)

    # Each failure counts once on check and once on record
    for _ in range(3):
        with pytest.raises(InvalidCredentialsError):
            await service.login("fox@example.com", "wrong")

    with pytest.raises(RateLimitExceededError) as exc_info:
        await service.login("Fox@Example.com", "wrong")

    assert len(calls) == 3
    assert "30 minutes" in exc_info.value.message
    assert exc_info.value.retry_after_seconds == 30 * 60
    assert exc_info.value.reset_time is not None


@pytest.mark.asyncio
async def test_login_requires_password(limiter):
    service = AuthService(make_identity(lambda request: httpx.Response(500)), limiter)

    with pytest.raises(ValidationError):
        await service.login("fox@example.com", "")

    assert limiter.attempt_count("fox@example.com") == 0
