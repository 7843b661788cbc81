"""GenerationJob repository.

Provides data access methods for GenerationJob entities. Status writes load the
row with FOR UPDATE so the poller and a concurrent cancel serialize on the job.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lumina.core.timezone import utcnow
from lumina.models.generation import ACTIVE_STATUSES, GenerationJob, GenerationStatus


class GenerationJobRepository:
    """Repository for GenerationJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist new generation job to database.

        Args:
            job: GenerationJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(
        self, job_id: UUID, user_id: UUID | None = None, for_update: bool = False
    ) -> GenerationJob | None:
        """Retrieve a generation job by UUID.

        Args:
            job_id: Job's unique identifier
            user_id: When given, only return the job if it belongs to this user
            for_update: Lock the row until the transaction ends

        Returns:
            GenerationJob if found, None otherwise
        """
        query = select(GenerationJob).where(GenerationJob.id == job_id)  # type: ignore[arg-type]
        if user_id is not None:
            query = query.where(GenerationJob.user_id == user_id)  # type: ignore[arg-type]
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_by_user(
        self,
        user_id: UUID,
        status: GenerationStatus | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[GenerationJob], int]:
        """Retrieve a page of a user's generation history, newest first.

        Args:
            user_id: Owner of the jobs
            status: Optional status filter
            start_date: Only jobs created at or after this time
            end_date: Only jobs created at or before this time
            limit: Page size
            offset: Number of jobs to skip

        Returns:
            Tuple of (jobs on this page, total matching jobs)
        """
        conditions = [GenerationJob.user_id == user_id]  # type: ignore[arg-type]
        if status is not None:
            conditions.append(GenerationJob.status == status)  # type: ignore[arg-type]
        if start_date is not None:
            conditions.append(GenerationJob.created_at >= start_date)  # type: ignore[arg-type]
        if end_date is not None:
            conditions.append(GenerationJob.created_at <= end_date)  # type: ignore[arg-type]

        total = await self.session.scalar(
            select(func.count()).select_from(GenerationJob).where(*conditions)
        )
        result = await self.session.execute(
            select(GenerationJob)
            .where(*conditions)
            .order_by(GenerationJob.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def list_active(self) -> list[GenerationJob]:
        """Retrieve all non-terminal jobs, oldest first (used for startup recovery)."""
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.status.in_(list(ACTIVE_STATUSES)))  # type: ignore[attr-defined]
            .order_by(GenerationJob.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def delete(self, job: GenerationJob) -> None:
        await self.session.delete(job)
        await self.session.flush()

    async def expire_stale(self, older_than: datetime, message: str) -> int:
        """Fail every non-terminal job created before older_than.

        Returns:
            Number of jobs moved to failed
        """
        result = await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.status.in_(list(ACTIVE_STATUSES)))  # type: ignore[attr-defined]
            .where(GenerationJob.created_at < older_than)  # type: ignore[arg-type]
            .values(
                status=GenerationStatus.FAILED,
                error_message=message,
                completed_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount  # type: ignore[attr-defined]

    async def count_stale(self, older_than: datetime) -> int:
        total = await self.session.scalar(
            select(func.count())
            .select_from(GenerationJob)
            .where(GenerationJob.status.in_(list(ACTIVE_STATUSES)))  # type: ignore[attr-defined]
            .where(GenerationJob.created_at < older_than)  # type: ignore[arg-type]
        )
        return int(total or 0)
