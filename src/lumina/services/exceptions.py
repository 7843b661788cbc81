"""Service error hierarchy for generation, credit and authentication operations.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors (machine code + short message)
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation)

Every error carries a stable ``code`` that the API layer renders next to the
human-readable message.
"""

from datetime import datetime
from typing import Optional


class ServiceError(Exception):
    """Base exception for all service errors."""

    code: str = "SERVICE_ERROR"
    default_message: str = "Unexpected service error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (503)
    """

    code = "TRANSIENT_ERROR"


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Configuration errors
    """

    code = "PERMANENT_ERROR"


# Request validation
class ValidationError(PermanentError):
    """Bad prompt or aspect ratio."""

    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


# Credits
class InsufficientCreditsError(PermanentError):
    """Balance is lower than the generation cost."""

    code = "INSUFFICIENT_CREDITS"
    default_message = "Not enough credits to generate an image"


# Lookups
class NotFoundError(PermanentError):
    """Unknown job or user."""

    code = "NOT_FOUND"
    default_message = "Resource not found"


class JobNotFoundError(NotFoundError):
    code = "JOB_NOT_FOUND"
    default_message = "Generation not found"


class UserNotFoundError(NotFoundError):
    code = "USER_NOT_FOUND"
    default_message = "User not found"


# Login throttling
class RateLimitExceededError(TransientError):
    """Too many failed login attempts for an identifier."""

    code = "RATE_LIMIT_EXCEEDED"
    default_message = "Too many failed login attempts"

    def __init__(
        self,
        message: Optional[str] = None,
        reset_time: Optional[datetime] = None,
        retry_after_seconds: Optional[int] = None,
    ):
        super().__init__(message)
        self.reset_time = reset_time
        self.retry_after_seconds = retry_after_seconds


# Provider (image generation) errors
class ProviderError(ServiceError):
    """Base exception for generation provider errors."""

    code = "PROVIDER_ERROR"
    default_message = "Image generation provider error"
    retryable: bool = False
    reason: str = "permanent"


class ProviderSubmitFailedError(ProviderError):
    """Submitting a generation to the provider failed."""

    code = "PROVIDER_SUBMIT_FAILED"
    default_message = "Could not start image generation. Please try again"


class ProviderPollFailedError(ProviderError):
    """Querying or cancelling a submitted generation failed."""

    code = "PROVIDER_POLL_FAILED"
    default_message = "Could not check generation status"


class PollTimeoutError(ProviderError):
    """Polling deadline exceeded before the provider finished."""

    code = "TIMEOUT"
    default_message = "Generation timed out. Please try again"


# Asset storage
class StorageTransferFailedError(TransientError):
    """Copying the generated asset into durable storage failed."""

    code = "STORAGE_TRANSFER_FAILED"
    default_message = "Could not store generated image"


# Authentication (external identity provider)
class AuthenticationError(PermanentError):
    """Login or token verification failed."""

    code = "AUTHENTICATION_FAILED"
    default_message = "Login failed"


class InvalidCredentialsError(AuthenticationError):
    code = "INVALID_CREDENTIALS"
    default_message = "Incorrect email or password"


class EmailNotConfirmedError(AuthenticationError):
    code = "EMAIL_NOT_CONFIRMED"
    default_message = "Email address has not been confirmed"


class AccountNotFoundError(AuthenticationError):
    code = "ACCOUNT_NOT_FOUND"
    default_message = "Account does not exist"


class IdentityProviderError(TransientError):
    """Identity provider unreachable or returned an unexpected response."""

    code = "IDENTITY_PROVIDER_ERROR"
    default_message = "An error occurred while signing in. Please try again"
