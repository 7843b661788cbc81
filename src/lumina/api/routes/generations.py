"""Image generation API endpoints.

This module implements REST endpoints for the generation lifecycle:
- POST /api/generations - Charge credits and start a generation
- GET /api/generations - Paginated generation history with status/date filters
- GET /api/generations/{job_id} - Current state of one generation
- POST /api/generations/{job_id}/cancel - Cancel a running generation
- DELETE /api/generations/{job_id} - Delete a generation and its stored image

All endpoints require a bearer token. Service errors are rendered by the
handlers in lumina.api.errors.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from lumina.api.dependencies import get_current_user_id, get_generation_service
from lumina.models.generation import GenerationJob, GenerationStatus
from lumina.services.generation import GenerationService
from lumina.services.image_generation.aspect_ratios import DEFAULT_ASPECT_RATIO

router = APIRouter(prefix="/api/generations", tags=["generations"])


# Request/Response Models


class GenerateRequest(BaseModel):
    """Request model for starting a generation."""

    prompt: str = Field(
        ...,
        description="Text prompt (3-500 characters after trimming)",
        max_length=2000,
    )
    aspect_ratio: str = Field(
        default=DEFAULT_ASPECT_RATIO,
        description='Output aspect ratio as "W:H" (e.g. 16:9, 1:1)',
        max_length=10,
    )


class GenerationDTO(BaseModel):
    """Data Transfer Object for generation jobs in API responses."""

    id: UUID
    user_id: UUID
    prompt: str
    aspect_ratio: str
    model_version: str
    image_url: str | None = Field(
        default=None, description="Stored image URL (only when succeeded)"
    )
    provider_job_id: str | None = Field(
        default=None, description="Provider prediction id (null until submission succeeded)"
    )
    status: GenerationStatus
    error_message: str | None = None
    cost_credits: Decimal
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job: GenerationJob) -> "GenerationDTO":
        return cls(
            id=job.id,
            user_id=job.user_id,
            prompt=job.prompt,
            aspect_ratio=job.aspect_ratio,
            model_version=job.model_version,
            image_url=job.image_url,
            provider_job_id=job.provider_job_id,
            status=GenerationStatus(job.status),
            error_message=job.error_message,
            cost_credits=job.cost_credits,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )


class GenerationsResponse(BaseModel):
    """Response model for paginated generation history."""

    generations: list[GenerationDTO]
    total: int = Field(..., description="Total number of generations matching the filters")
    offset: int
    limit: int


class CancelResponse(BaseModel):
    cancelled: bool = Field(
        ..., description="False when the generation was already finished or never submitted"
    )
    generation: GenerationDTO


# API Endpoints


@router.post("", response_model=GenerationDTO, status_code=status.HTTP_202_ACCEPTED)
async def create_generation(
    request: GenerateRequest,
    user_id: UUID = Depends(get_current_user_id),
    service: GenerationService = Depends(get_generation_service),
) -> GenerationDTO:
    """Charge credits and submit a generation.

    Returns as soon as the provider accepted the job (status "processing").
    Clients poll GET /api/generations/{id} until the status is terminal.

    Raises:
        400: Invalid prompt or aspect ratio
        402: Not enough credits
        502: Provider rejected the submission (credits refunded)
    """
    job = await service.generate(user_id, request.prompt, request.aspect_ratio)
    return GenerationDTO.from_job(job)


@router.get("", response_model=GenerationsResponse)
async def list_generations(
    user_id: UUID = Depends(get_current_user_id),
    service: GenerationService = Depends(get_generation_service),
    status_filter: GenerationStatus | None = Query(default=None, alias="status"),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
) -> GenerationsResponse:
    """Get the caller's generation history, newest first."""
    page = await service.list(
        user_id,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return GenerationsResponse(
        generations=[GenerationDTO.from_job(job) for job in page.jobs],
        total=page.total,
        offset=page.offset,
        limit=page.limit,
    )


@router.get("/{job_id}", response_model=GenerationDTO)
async def get_generation(
    job_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    service: GenerationService = Depends(get_generation_service),
) -> GenerationDTO:
    job = await service.get(user_id, job_id)
    return GenerationDTO.from_job(job)


@router.post("/{job_id}/cancel", response_model=CancelResponse)
async def cancel_generation(
    job_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    service: GenerationService = Depends(get_generation_service),
) -> CancelResponse:
    """Cancel a running generation (no refund; the credits were spent on submission)."""
    result = await service.cancel(user_id, job_id)
    return CancelResponse(cancelled=result.applicable, generation=GenerationDTO.from_job(result.job))


@router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_generation(
    job_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    service: GenerationService = Depends(get_generation_service),
) -> Response:
    await service.delete(user_id, job_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
