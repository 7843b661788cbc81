"""Replicate gateway for asynchronous image generation with error classification.

The gateway is the only component holding the Replicate API token. Callers
submit a prediction, poll it by id and cancel it by id; the token never leaves
the server process.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx
import replicate
import structlog
from replicate.exceptions import ReplicateError as ReplicateAPIError

from lumina.models.generation import GenerationStatus
from lumina.services.exceptions import (
    ProviderError,
    ProviderPollFailedError,
    ProviderSubmitFailedError,
)

logger = structlog.get_logger(__name__)

# Provider status vocabulary -> job status vocabulary
PROVIDER_STATUS_MAP = {
    "starting": GenerationStatus.STARTING,
    "processing": GenerationStatus.PROCESSING,
    "succeeded": GenerationStatus.SUCCEEDED,
    "failed": GenerationStatus.FAILED,
    "canceled": GenerationStatus.CANCELLED,
}

TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}
AUTH_STATUS_CODES = {401, 403}


@dataclass
class ProviderPrediction:
    """Provider-side view of a submitted generation."""

    id: str
    status: str
    output: Any = None
    error: Optional[str] = None

    @property
    def job_status(self) -> GenerationStatus:
        try:
            return PROVIDER_STATUS_MAP[self.status]
        except KeyError:
            raise ProviderPollFailedError(f"Unknown provider status: {self.status!r}") from None

    @property
    def output_url(self) -> Optional[str]:
        """First output URL (format varies by model: list of URLs or a single URL)."""
        if isinstance(self.output, (list, tuple)):
            return str(self.output[0]) if self.output else None
        if self.output:
            return str(self.output)
        return None


def _status_code(exception: Exception) -> Optional[int]:
    status = getattr(exception, "status", None)
    if isinstance(status, int):
        return status
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code
    return None


def classify_error(
    exception: Exception, error_cls: type[ProviderError] = ProviderPollFailedError
) -> ProviderError:
    """Classify a provider exception into a categorized gateway error.

    Structured HTTP status codes are used when the SDK exposes them; matching
    on the message text is only a fallback.

    Args:
        exception: Original exception from the Replicate SDK or network layer
        error_cls: Gateway error type to produce (submit or poll failure)

    Returns:
        error_cls instance with ``reason`` and ``retryable`` set

    Classification rules:
        - 408/429/5xx, timeouts, connection errors → transient
        - 401/403 → authentication (permanent)
        - Content policy / NSFW wording → content_policy (permanent)
        - Anything else → permanent
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()
    status = _status_code(exception)

    if status in TRANSIENT_STATUS_CODES:
        reason, prefix, retryable = "transient", f"Provider unavailable ({status})", True
    elif status in AUTH_STATUS_CODES:
        reason, prefix, retryable = "authentication", "Authentication failed", False
    elif isinstance(exception, (httpx.TimeoutException, TimeoutError)):
        reason, prefix, retryable = "transient", "Network timeout", True
    elif isinstance(exception, (httpx.TransportError, ConnectionError)):
        reason, prefix, retryable = "transient", "Connection error", True
    elif status is not None:
        reason, prefix, retryable = "permanent", f"Provider rejected request ({status})", False
    # Fallback: no structured code, inspect the message
    elif "timeout" in error_message_lower:
        reason, prefix, retryable = "transient", "Network timeout", True
    elif "rate limit" in error_message_lower or "service unavailable" in error_message_lower:
        reason, prefix, retryable = "transient", "Provider unavailable", True
    elif (
        "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        reason, prefix, retryable = "authentication", "Authentication failed", False
    elif (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
    ):
        reason, prefix, retryable = "content_policy", "Content policy violation", False
    elif isinstance(exception, OSError):
        reason, prefix, retryable = "transient", "Connection error", True
    else:
        reason, prefix, retryable = "permanent", "Permanent error", False

    classified = error_cls(f"{prefix}: {error_message}")
    classified.reason = reason
    classified.retryable = retryable
    return classified


def _to_prediction(raw: Any) -> ProviderPrediction:
    error = getattr(raw, "error", None)
    return ProviderPrediction(
        id=str(raw.id),
        status=str(raw.status),
        output=getattr(raw, "output", None),
        error=str(error) if error else None,
    )


class ReplicateGateway:
    """Submit, poll and cancel Replicate predictions.

    The Replicate SDK is synchronous, so every call runs in a worker thread.

    Example:
        >>> gateway = ReplicateGateway(api_token="r8_...", model="black-forest-labs/flux-pro")
        >>> prediction = await gateway.submit("a red fox in snow", "1:1")
        >>> prediction = await gateway.poll(prediction.id)
    """

    def __init__(
        self,
        api_token: str,
        model: str = "black-forest-labs/flux-pro",
        output_format: str = "png",
        output_quality: int = 90,
        client: Optional[replicate.Client] = None,
    ):
        self.api_token = api_token
        self.model = model
        self.output_format = output_format
        self.output_quality = output_quality
        self._client = client or replicate.Client(api_token=api_token)

    async def _call(
        self, func: Callable[..., Any], error_cls: type[ProviderError], *args, **kwargs
    ) -> ProviderPrediction:
        if not self.api_token:
            raise error_cls("REPLICATE_API_TOKEN not configured")

        try:
            raw = await asyncio.to_thread(func, *args, **kwargs)
            return _to_prediction(raw)

        except (ReplicateAPIError, httpx.HTTPError, ConnectionError, OSError, TimeoutError) as e:
            raise classify_error(e, error_cls) from e

        except Exception as e:
            # Unexpected errors (including malformed responses) are never retried
            raise error_cls(f"Unexpected error: {e}") from e

    async def submit(self, prompt: str, aspect_ratio: str) -> ProviderPrediction:
        """Create a prediction.

        Raises:
            ProviderSubmitFailedError: If the provider rejected or never received the request
        """
        prediction = await self._call(
            self._client.predictions.create,
            ProviderSubmitFailedError,
            model=self.model,
            input={
                "prompt": prompt,
                "aspect_ratio": aspect_ratio,
                "output_format": self.output_format,
                "output_quality": self.output_quality,
            },
        )
        logger.info(
            "provider.submitted",
            prediction_id=prediction.id,
            status=prediction.status,
            model=self.model,
        )
        return prediction

    async def poll(self, prediction_id: str) -> ProviderPrediction:
        """Fetch current prediction state.

        Raises:
            ProviderPollFailedError: On transport, API or parsing errors
        """
        return await self._call(
            self._client.predictions.get, ProviderPollFailedError, prediction_id
        )

    async def cancel(self, prediction_id: str) -> ProviderPrediction:
        """Ask the provider to cancel a prediction.

        Raises:
            ProviderPollFailedError: If the cancel request failed
        """
        prediction = await self._call(
            self._client.predictions.cancel, ProviderPollFailedError, prediction_id
        )
        logger.info("provider.cancelled", prediction_id=prediction_id, status=prediction.status)
        return prediction
