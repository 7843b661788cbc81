"""Generation poller: drives submitted jobs to a terminal state.

Each submitted job gets its own asyncio task that polls the provider with
exponential backoff (capped) until the provider reports a terminal status or
the poll deadline passes. Results are written to the job store only; nobody
awaits the task.

Every write goes through a fresh Unit of Work that loads the job with
FOR UPDATE. A job found terminal at that point (for example cancelled by the
user while a poll was in flight) stops the loop without writing, so terminal
states are never overwritten.

Startup recovery (recover_orphaned_jobs) resumes polling for jobs that were
left non-terminal by a previous process.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

from lumina.core.config import Settings
from lumina.core.timezone import utcnow
from lumina.models.generation import (
    GENERIC_CANCELLED_MESSAGE,
    GENERIC_FAILURE_MESSAGE,
    GenerationJob,
    GenerationStatus,
)
from lumina.services.credits import CreditLedger
from lumina.services.exceptions import (
    PollTimeoutError,
    ProviderError,
    StorageTransferFailedError,
)
from lumina.services.image_generation.replicate_client import (
    ProviderPrediction,
    ReplicateGateway,
)
from lumina.services.storage.asset_storage import AssetStorage

logger = structlog.get_logger(__name__)

NO_OUTPUT_MESSAGE = "Generation succeeded without output"
INTERRUPTED_MESSAGE = "Generation was interrupted before it reached the provider"


class GenerationPoller:
    """Owns the per-job poll tasks of this process.

    Example:
        >>> poller = GenerationPoller(uow_factory, gateway, storage, settings)
        >>> poller.start(job.id, job.provider_job_id, job.user_id)
        >>> poller.stop(job.id)  # e.g. after a user cancel
    """

    def __init__(
        self,
        uow_factory: Callable,
        gateway: ReplicateGateway,
        storage: Optional[AssetStorage],
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.uow_factory = uow_factory
        self.gateway = gateway
        self.storage = storage
        self.settings = settings
        self._sleep = sleep
        self._clock = clock
        self._tasks: dict[UUID, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def next_poll_interval(self, current: float) -> float:
        return min(current * self.settings.poll_interval_multiplier, self.settings.poll_interval_max)

    def is_polling(self, job_id: UUID) -> bool:
        return job_id in self._tasks

    def start(
        self,
        job_id: UUID,
        prediction_id: str,
        user_id: UUID,
        already_elapsed: float = 0.0,
    ) -> asyncio.Task:
        """Spawn the detached poll task for a job (no-op if one is already running).

        Args:
            job_id: Job to drive
            prediction_id: Provider prediction id of the job
            user_id: Owner (used for the storage path)
            already_elapsed: Seconds since submission, counted against the deadline
        """
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(
            self.poll(job_id, prediction_id, user_id, already_elapsed),
            name=f"generation-poll-{job_id}",
        )
        self._tasks[job_id] = task

        def on_done(finished: asyncio.Task) -> None:
            if self._tasks.get(job_id) is finished:
                del self._tasks[job_id]
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc:
                logger.error(
                    "generation.poller_crashed",
                    job_id=str(job_id),
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=exc,
                )

        task.add_done_callback(on_done)
        return task

    def stop(self, job_id: UUID) -> bool:
        """Cancel the job's poll task.

        Returns:
            True if a running task was cancelled
        """
        task = self._tasks.pop(job_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("generation.poll_stopped", job_id=str(job_id))
        return True

    async def shutdown(self) -> None:
        """Cancel all poll tasks and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def poll(
        self,
        job_id: UUID,
        prediction_id: str,
        user_id: UUID,
        already_elapsed: float = 0.0,
    ) -> Optional[GenerationStatus]:
        """Poll loop for one job.

        Intervals grow from POLL_INTERVAL_START by POLL_INTERVAL_MULTIPLIER up to
        POLL_INTERVAL_MAX. The deadline is checked before every poll.

        Any unexpected error fails the job, so a crashed loop never leaves it
        non-terminal without a writer.

        Returns:
            Terminal status written by this loop, or None if the job was already
            terminal (or gone) when a result arrived
        """
        try:
            return await self._poll_loop(job_id, prediction_id, user_id, already_elapsed)
        except Exception as e:
            logger.error(
                "generation.poll_crashed",
                job_id=str(job_id),
                prediction_id=prediction_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=e,
            )
            return await self._fail(job_id, f"Unexpected error: {e}")

    async def _poll_loop(
        self,
        job_id: UUID,
        prediction_id: str,
        user_id: UUID,
        already_elapsed: float,
    ) -> Optional[GenerationStatus]:
        started_at = self._clock() - already_elapsed
        interval = self.settings.poll_interval_start
        attempt = 0

        while True:
            elapsed = self._clock() - started_at
            if elapsed > self.settings.max_poll_duration_seconds:
                logger.warning(
                    "generation.timeout",
                    job_id=str(job_id),
                    prediction_id=prediction_id,
                    elapsed_seconds=round(elapsed, 1),
                )
                return await self._fail(job_id, PollTimeoutError().message)

            attempt += 1
            try:
                prediction = await self.gateway.poll(prediction_id)
                status = prediction.job_status
            except ProviderError as e:
                logger.error(
                    "generation.poll_failed",
                    job_id=str(job_id),
                    prediction_id=prediction_id,
                    error=e.message,
                    reason=e.reason,
                )
                return await self._fail(job_id, e.message)

            logger.debug(
                "generation.poll",
                job_id=str(job_id),
                status=prediction.status,
                attempt=attempt,
                next_interval=interval,
            )

            done, outcome = await self._apply(job_id, user_id, status, prediction)
            if done:
                return outcome

            await self._sleep(interval)
            interval = self.next_poll_interval(interval)

    async def _apply(
        self,
        job_id: UUID,
        user_id: UUID,
        status: GenerationStatus,
        prediction: ProviderPrediction,
    ) -> tuple[bool, Optional[GenerationStatus]]:
        """Apply one poll result.

        Returns:
            Tuple of (stop polling, terminal status written). The status is None
            when the job was already terminal or gone.
        """
        if status == GenerationStatus.SUCCEEDED:
            source_url = prediction.output_url
            if not source_url:
                return True, await self._fail(job_id, NO_OUTPUT_MESSAGE)
            if not await self._is_active(job_id):
                return True, None
            image_url = await self._persist_asset(source_url, user_id, job_id)
            written = await self._write(job_id, lambda job: job.mark_succeeded(image_url))
            if written is None and image_url != source_url:
                # Job went terminal during the transfer; the stored object is unreferenced
                await self._discard_asset(user_id, job_id)
            return True, written

        if status == GenerationStatus.FAILED:
            message = prediction.error or GENERIC_FAILURE_MESSAGE
            return True, await self._write(job_id, lambda job: job.mark_failed(message))

        if status == GenerationStatus.CANCELLED:
            message = prediction.error or GENERIC_CANCELLED_MESSAGE
            return True, await self._write(job_id, lambda job: job.mark_cancelled(message))

        # starting: nothing to record, but still stop if the job went terminal
        transition = (
            (lambda job: job.mark_processing()) if status == GenerationStatus.PROCESSING else None
        )
        written = await self._write(job_id, transition)
        return written is None, None

    async def _write(
        self, job_id: UUID, transition: Optional[Callable[[GenerationJob], None]]
    ) -> Optional[GenerationStatus]:
        """Run transition on the locked job row unless the job is terminal or gone.

        Returns:
            The job's status after the write, or None if nothing was written
        """
        async with await self.uow_factory() as uow:
            job = await uow.generations.get_by_id(job_id, for_update=True)
            if job is None:
                logger.info("generation.poll_job_gone", job_id=str(job_id))
                return None
            if job.is_terminal:
                logger.info(
                    "generation.already_terminal",
                    job_id=str(job_id),
                    status=GenerationStatus(job.status).value,
                )
                return None
            if transition is not None:
                transition(job)
            status = GenerationStatus(job.status)

        if status == GenerationStatus.SUCCEEDED:
            logger.info("generation.succeeded", job_id=str(job_id), image_url=job.image_url)
        elif status == GenerationStatus.FAILED:
            logger.warning("generation.failed", job_id=str(job_id), error=job.error_message)
        elif status == GenerationStatus.CANCELLED:
            logger.info("generation.cancelled", job_id=str(job_id))
        return status

    async def _fail(self, job_id: UUID, message: str) -> Optional[GenerationStatus]:
        return await self._write(job_id, lambda job: job.mark_failed(message))

    async def _is_active(self, job_id: UUID) -> bool:
        async with await self.uow_factory() as uow:
            job = await uow.generations.get_by_id(job_id)
        if job is None or job.is_terminal:
            logger.info("generation.skip_asset_transfer", job_id=str(job_id))
            return False
        return True

    async def _persist_asset(self, source_url: str, user_id: UUID, job_id: UUID) -> str:
        """Copy the provider output to storage; fall back to the provider URL.

        Storage problems never fail an otherwise succeeded job.
        """
        if self.storage is None:
            return source_url
        try:
            return await self.storage.transfer(source_url, user_id, job_id)
        except StorageTransferFailedError as e:
            logger.warning(
                "generation.storage_fallback",
                job_id=str(job_id),
                error=e.message,
            )
        except Exception as e:
            logger.error(
                "generation.storage_fallback",
                job_id=str(job_id),
                error=str(e),
                error_type=type(e).__name__,
                exc_info=e,
            )
        return source_url

    async def _discard_asset(self, user_id: UUID, job_id: UUID) -> None:
        if self.storage is None:
            return
        try:
            await self.storage.remove(user_id, job_id)
        except StorageTransferFailedError as e:
            logger.warning("generation.asset_discard_failed", job_id=str(job_id), error=e.message)


async def recover_orphaned_jobs(
    uow_factory: Callable,
    poller: GenerationPoller,
    settings: Settings,
    ledger: Optional[CreditLedger] = None,
) -> tuple[int, int]:
    """Resume or close jobs left non-terminal by a previous process.

    Jobs with a provider id are handed back to the poller with the time already
    spent counted against the deadline. Jobs that never got a provider id are
    failed (and refunded when REFUND_ON_SUBMIT_FAILURE is set).

    Returns:
        Tuple of (resumed, failed) job counts
    """
    ledger = ledger or CreditLedger()
    resumed: list[tuple[UUID, str, UUID, float]] = []
    failed = 0
    now = utcnow()

    async with await uow_factory() as uow:
        for job in await uow.generations.list_active():
            if job.provider_job_id:
                elapsed = max((now - job.created_at).total_seconds(), 0.0)
                resumed.append((job.id, job.provider_job_id, job.user_id, elapsed))
                continue

            job.mark_failed(INTERRUPTED_MESSAGE)
            if settings.refund_on_submit_failure:
                user = await uow.users.get_by_id(job.user_id)
                if user is not None and not user.is_admin:
                    await ledger.refund(uow, job.user_id, job.cost_credits)
            failed += 1

    for job_id, prediction_id, user_id, elapsed in resumed:
        poller.start(job_id, prediction_id, user_id, already_elapsed=elapsed)

    if resumed or failed:
        logger.info("worker.recovery", resumed_jobs=len(resumed), failed_jobs=failed)
    return len(resumed), failed
