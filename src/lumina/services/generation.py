"""Generation orchestration: validate, charge, create, submit and hand off.

The request path never waits for the image. ``generate`` returns as soon as the
provider accepted the job; the GenerationPoller finishes it in the background.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

import structlog

from lumina.core.config import Settings
from lumina.models.generation import GenerationJob, GenerationStatus
from lumina.services.credits import CreditLedger, UserCredits
from lumina.services.exceptions import (
    JobNotFoundError,
    ProviderError,
    ProviderSubmitFailedError,
    StorageTransferFailedError,
)
from lumina.services.image_generation.aspect_ratios import calculate_cost
from lumina.services.image_generation.prompt_validator import (
    validate_aspect_ratio,
    validate_prompt,
)
from lumina.services.image_generation.replicate_client import ReplicateGateway
from lumina.services.storage.asset_storage import AssetStorage
from lumina.workers.generation_poller import GenerationPoller

logger = structlog.get_logger(__name__)

USER_CANCELLED_MESSAGE = "Cancelled by user"


@dataclass
class CancelResult:
    """Outcome of a cancel request.

    Attributes:
        applicable: False when the job was already terminal or never reached the provider
        job: Job state after the request
    """

    applicable: bool
    job: GenerationJob


@dataclass
class GenerationPage:
    jobs: list[GenerationJob]
    total: int
    limit: int
    offset: int


class GenerationService:
    """Entry point for everything a user does with generations."""

    def __init__(
        self,
        uow_factory: Callable,
        gateway: ReplicateGateway,
        poller: GenerationPoller,
        settings: Settings,
        storage: Optional[AssetStorage] = None,
        ledger: Optional[CreditLedger] = None,
    ):
        self.uow_factory = uow_factory
        self.gateway = gateway
        self.poller = poller
        self.settings = settings
        self.storage = storage
        self.ledger = ledger or CreditLedger()

    async def generate(self, user_id: UUID, prompt: str, aspect_ratio: str) -> GenerationJob:
        """Start a billable generation.

        Workflow:
        1. Validate prompt and aspect ratio, look up cost
        2. Check and charge credits, create the job (one transaction)
        3. Submit to the provider
        4. Record the provider id (status processing) and start polling

        Returns:
            Job in processing state

        Raises:
            ValidationError: Bad prompt or aspect ratio (nothing charged)
            InsufficientCreditsError: Balance too low (no job created)
            UserNotFoundError: Unknown user
            ProviderSubmitFailedError: Provider rejected the submission (job failed,
                charge refunded when REFUND_ON_SUBMIT_FAILURE is set)
        """
        clean_prompt = validate_prompt(
            prompt,
            min_length=self.settings.prompt_min_length,
            max_length=self.settings.prompt_max_length,
        )
        ratio = validate_aspect_ratio(aspect_ratio)
        cost = calculate_cost(ratio)

        async with await self.uow_factory() as uow:
            charge = await self.ledger.check_and_charge(uow, user_id, cost)
            job = GenerationJob(
                user_id=user_id,
                prompt=clean_prompt,
                aspect_ratio=ratio,
                model_version=self.settings.replicate_model,
                cost_credits=cost,
            )
            await uow.generations.add(job)

        job_id = job.id
        logger.info(
            "generation.created",
            job_id=str(job_id),
            user_id=str(user_id),
            aspect_ratio=ratio,
            cost=str(cost),
        )

        try:
            prediction = await self.gateway.submit(clean_prompt, ratio)
        except ProviderSubmitFailedError as e:
            await self._fail_submission(
                job_id,
                user_id,
                cost,
                e,
                refund=charge.charged and self.settings.refund_on_submit_failure,
            )
            raise

        async with await self.uow_factory() as uow:
            job = await uow.generations.get_by_id(job_id, for_update=True)
            if job is None:
                raise JobNotFoundError()
            job.mark_processing(prediction.id)

        logger.info("generation.submitted", job_id=str(job_id), prediction_id=prediction.id)
        self.poller.start(job_id, prediction.id, user_id)
        return job

    async def _fail_submission(
        self, job_id: UUID, user_id: UUID, cost: Decimal, error: ProviderError, refund: bool
    ) -> None:
        async with await self.uow_factory() as uow:
            job = await uow.generations.get_by_id(job_id, for_update=True)
            if job is not None and not job.is_terminal:
                job.mark_failed(error.message)
            if refund:
                await self.ledger.refund(uow, user_id, cost)

        logger.error(
            "generation.submit_failed",
            job_id=str(job_id),
            error=error.message,
            reason=error.reason,
            refunded=refund,
        )

    async def cancel(self, user_id: UUID, job_id: UUID) -> CancelResult:
        """Cancel a running job.

        Only non-terminal jobs that reached the provider can be cancelled. The
        provider is asked to stop (best effort), then the job is forced to
        cancelled under the row lock and its poll task is stopped.

        Raises:
            JobNotFoundError: Unknown job or not owned by user
        """
        job = await self.get(user_id, job_id)
        if not job.can_cancel:
            return CancelResult(applicable=False, job=job)

        self.poller.stop(job_id)

        if job.provider_job_id:
            try:
                await self.gateway.cancel(job.provider_job_id)
            except ProviderError as e:
                logger.warning(
                    "generation.provider_cancel_failed", job_id=str(job_id), error=e.message
                )

        async with await self.uow_factory() as uow:
            locked = await uow.generations.get_by_id(job_id, user_id=user_id, for_update=True)
            if locked is None:
                raise JobNotFoundError()
            if locked.is_terminal:
                return CancelResult(applicable=False, job=locked)
            locked.mark_cancelled(USER_CANCELLED_MESSAGE)

        logger.info("generation.cancelled", job_id=str(job_id), user_id=str(user_id))
        return CancelResult(applicable=True, job=locked)

    async def get(self, user_id: UUID, job_id: UUID) -> GenerationJob:
        """Raises JobNotFoundError unless the job exists and belongs to user_id."""
        async with await self.uow_factory() as uow:
            job = await uow.generations.get_by_id(job_id, user_id=user_id)
        if job is None:
            raise JobNotFoundError()
        return job

    async def list(
        self,
        user_id: UUID,
        status: Optional[GenerationStatus] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> GenerationPage:
        async with await self.uow_factory() as uow:
            jobs, total = await uow.generations.list_by_user(
                user_id,
                status=status,
                start_date=start_date,
                end_date=end_date,
                limit=limit,
                offset=offset,
            )
        return GenerationPage(jobs=jobs, total=total, limit=limit, offset=offset)

    async def delete(self, user_id: UUID, job_id: UUID) -> None:
        """Delete a job and its stored image.

        Removing the stored image is best effort; the record is deleted regardless.

        Raises:
            JobNotFoundError: Unknown job or not owned by user
        """
        job = await self.get(user_id, job_id)
        self.poller.stop(job_id)

        if self.storage is not None and job.image_url:
            try:
                await self.storage.remove(user_id, job_id)
            except StorageTransferFailedError as e:
                logger.warning("generation.asset_remove_failed", job_id=str(job_id), error=e.message)

        async with await self.uow_factory() as uow:
            locked = await uow.generations.get_by_id(job_id, user_id=user_id, for_update=True)
            if locked is None:
                raise JobNotFoundError()
            await uow.generations.delete(locked)

        logger.info("generation.deleted", job_id=str(job_id), user_id=str(user_id))

    async def get_credits(self, user_id: UUID) -> UserCredits:
        async with await self.uow_factory() as uow:
            return await self.ledger.get_user_credits(uow, user_id)
