"""Login flow: email normalization, attempt throttling and identity sign-in."""

import re
from datetime import datetime, timezone

import structlog

from lumina.services.exceptions import (
    AuthenticationError,
    IdentityProviderError,
    RateLimitExceededError,
    ValidationError,
)
from lumina.services.identity import IdentityClient, IdentitySession
from lumina.services.rate_limiter import RateLimiter

logger = structlog.get_logger()

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
EMAIL_MAX_LENGTH = 254


def normalize_email(email: str) -> str:
    """Trim, lowercase and validate an email address.

    Raises:
        ValidationError: If the address is empty, too long or malformed
    """
    normalized = (email or "").strip().lower()
    if not normalized:
        raise ValidationError("Email is required")
    if len(normalized) > EMAIL_MAX_LENGTH or not EMAIL_PATTERN.match(normalized):
        raise ValidationError("Invalid email address")
    return normalized


class AuthService:
    """Password login guarded by the per-process RateLimiter."""

    def __init__(self, identity: IdentityClient, rate_limiter: RateLimiter):
        self.identity = identity
        self.rate_limiter = rate_limiter

    async def login(self, email: str, password: str) -> IdentitySession:
        """Sign in, counting failed attempts per normalized email.

        Raises:
            ValidationError: Malformed email or empty password
            RateLimitExceededError: Identifier is blocked
            AuthenticationError: Credentials rejected
            IdentityProviderError: Identity provider unavailable
        """
        identifier = normalize_email(email)
        if not password:
            raise ValidationError("Password is required")

        result = self.rate_limiter.check(identifier)
        if not result.allowed:
            reset_time = result.reset_time or 0.0
            wait = self.rate_limiter.format_reset_time(reset_time)
            logger.warning("auth.login_throttled", retry_in=wait)
            raise RateLimitExceededError(
                f"Too many failed login attempts. Please try again in {wait}",
                reset_time=datetime.fromtimestamp(reset_time, tz=timezone.utc),
                retry_after_seconds=int(self.rate_limiter.seconds_until(reset_time)) or 1,
            )

        try:
            session = await self.identity.sign_in(identifier, password)
        except (AuthenticationError, IdentityProviderError) as e:
            self.rate_limiter.record_failed_attempt(identifier)
            logger.info("auth.login_failed", code=e.code)
            raise

        self.rate_limiter.clear_attempts(identifier)
        logger.info("auth.login_succeeded", user_id=str(session.user_id))
        return session
