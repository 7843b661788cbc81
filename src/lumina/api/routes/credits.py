"""Credits API endpoints.

- GET /api/credits - Balance and generation counters of the caller
- GET /api/credits/pricing - Supported aspect ratios and their cost
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from lumina.api.dependencies import get_current_user_id, get_generation_service
from lumina.services.generation import GenerationService
from lumina.services.image_generation.aspect_ratios import ASPECT_RATIO_OPTIONS

router = APIRouter(prefix="/api/credits", tags=["credits"])


class CreditsResponse(BaseModel):
    credits: Decimal = Field(..., description="Current balance (-1 means unlimited)")
    is_admin: bool
    total_generations: int
    last_generation_at: datetime | None = None


class AspectRatioDTO(BaseModel):
    value: str
    label: str
    width: int
    height: int
    cost: Decimal


@router.get("", response_model=CreditsResponse)
async def get_credits(
    user_id: UUID = Depends(get_current_user_id),
    service: GenerationService = Depends(get_generation_service),
) -> CreditsResponse:
    credits = await service.get_credits(user_id)
    return CreditsResponse(
        credits=credits.credits,
        is_admin=credits.is_admin,
        total_generations=credits.total_generations,
        last_generation_at=credits.last_generation_at,
    )


@router.get("/pricing", response_model=list[AspectRatioDTO])
async def get_pricing() -> list[AspectRatioDTO]:
    """Public cost table (no authentication)."""
    return [
        AspectRatioDTO(
            value=option.value,
            label=option.label,
            width=option.width,
            height=option.height,
            cost=option.cost,
        )
        for option in ASPECT_RATIO_OPTIONS
    ]
