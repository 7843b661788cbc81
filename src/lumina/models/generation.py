"""GenerationJob entity - one image generation request with lifecycle status tracking."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column
from sqlalchemy import Enum as SAEnum
from sqlmodel import Field, SQLModel

from lumina.core.timezone import utcnow

ERROR_MESSAGE_MAX_LENGTH = 1000
GENERIC_FAILURE_MESSAGE = "Generation failed"
GENERIC_CANCELLED_MESSAGE = "Generation was cancelled"


class GenerationStatus(str, Enum):
    """Generation job lifecycle status."""

    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {GenerationStatus.SUCCEEDED, GenerationStatus.FAILED, GenerationStatus.CANCELLED}
)
ACTIVE_STATUSES = frozenset({GenerationStatus.STARTING, GenerationStatus.PROCESSING})


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid generation job state transition."""

    pass


class GenerationJob(SQLModel, table=True):
    """GenerationJob tracks a billable image generation from submission to result."""

    __tablename__ = "generation_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    prompt: str = Field(max_length=500)
    aspect_ratio: str = Field(max_length=10)
    model_version: str = Field(max_length=255)
    image_url: Optional[str] = Field(default=None)
    provider_job_id: Optional[str] = Field(default=None, max_length=255, index=True)
    status: GenerationStatus = Field(
        default=GenerationStatus.STARTING,
        sa_column=Column(
            SAEnum(
                GenerationStatus,
                name="generation_status",
                values_callable=lambda statuses: [s.value for s in statuses],
            ),
            nullable=False,
            index=True,
        ),
    )
    error_message: Optional[str] = Field(default=None, max_length=ERROR_MESSAGE_MAX_LENGTH)
    cost_credits: Decimal = Field(max_digits=12, decimal_places=2)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    completed_at: Optional[datetime] = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return GenerationStatus(self.status).is_terminal

    @property
    def can_cancel(self) -> bool:
        """Only a submitted, still running job can be cancelled."""
        return self.provider_job_id is not None and not self.is_terminal

    def _ensure_active(self, target: GenerationStatus) -> None:
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark {target.value} from terminal state {GenerationStatus(self.status).value}."
            )

    def mark_processing(self, provider_job_id: Optional[str] = None) -> None:
        """Transition from starting (or processing) to processing.

        Args:
            provider_job_id: External prediction id, required unless already linked

        Raises:
            InvalidStateTransition: If the job is terminal or has no provider linkage
        """
        self._ensure_active(GenerationStatus.PROCESSING)
        if provider_job_id:
            self.provider_job_id = provider_job_id
        if not self.provider_job_id:
            raise InvalidStateTransition(
                "Cannot mark processing without a provider job id. Submission must succeed first."
            )
        self.status = GenerationStatus.PROCESSING

    def mark_succeeded(self, image_url: str) -> None:
        """Transition from a non-terminal state to succeeded.

        Raises:
            InvalidStateTransition: If the job is already terminal
            ValueError: If image_url is empty
        """
        self._ensure_active(GenerationStatus.SUCCEEDED)
        if not image_url:
            raise ValueError("image_url is required")
        self.image_url = image_url
        self.status = GenerationStatus.SUCCEEDED
        self.completed_at = utcnow()

    def mark_failed(self, error_message: str) -> None:
        """Transition from a non-terminal state to failed.

        Raises:
            InvalidStateTransition: If the job is already terminal
        """
        self._ensure_active(GenerationStatus.FAILED)
        self.error_message = (error_message or GENERIC_FAILURE_MESSAGE)[:ERROR_MESSAGE_MAX_LENGTH]
        self.status = GenerationStatus.FAILED
        self.completed_at = utcnow()

    def mark_cancelled(self, error_message: Optional[str] = None) -> None:
        """Transition from a non-terminal state to cancelled.

        Args:
            error_message: Reason recorded on the job (generic message when empty)

        Raises:
            InvalidStateTransition: If the job is already terminal
        """
        self._ensure_active(GenerationStatus.CANCELLED)
        self.error_message = (error_message or GENERIC_CANCELLED_MESSAGE)[:ERROR_MESSAGE_MAX_LENGTH]
        self.status = GenerationStatus.CANCELLED
        self.completed_at = utcnow()
