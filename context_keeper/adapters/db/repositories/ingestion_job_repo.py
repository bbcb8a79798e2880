from datetime import datetime, timezone
from sqlalchemy.orm import Session
from sqlalchemy import select
from context_keeper.adapters.db.models.ingestion_job import IngestionJobModel
from context_keeper.adapters.db.repositories.base_repository import BaseRepository
from context_keeper.core.exceptions import InvalidStateError, NotFoundError
from context_keeper.data.enums.job_status import JobStatus


class IngestionJobRepository(BaseRepository[IngestionJobModel]):
    """Repository for ingestion job rows and their status transitions."""

    def __init__(self, db: Session):
        super().__init__(db, IngestionJobModel)

    def create_job(
        self,
        repository_id: int,
        requested_by: str | None = None,
    ) -> IngestionJobModel:
        return self.create(
            repository_id=repository_id,
            requested_by=requested_by,
            status=JobStatus.pending,
        )

    def get_required(self, job_id: int) -> IngestionJobModel:
        job = self.get_by_id(job_id)
        if not job:
            raise NotFoundError(f"Ingestion job {job_id} not found")
        return job

    def mark_running(self, job_id: int) -> IngestionJobModel:
        """
        Moves a pending job to running and stamps started_at.

        Raises:
            NotFoundError: no such job
            InvalidStateError: the job is not pending
        """
        job = self.get_required(job_id)
        if job.status is not JobStatus.pending:
            raise InvalidStateError(
                f"Job {job_id} cannot start from status {job.status.value}"
            )

        job.status = JobStatus.running
        job.started_at = datetime.now(timezone.utc)
        self._commit(f"mark job {job_id} running")
        self.db.refresh(job)
        return job

    def mark_finished(
        self,
        job_id: int,
        status: JobStatus,
        error_message: str | None = None,
    ) -> IngestionJobModel:
        """
        Moves a running job to a terminal status and stamps finished_at.

        The error message is stored only for partial and failed jobs.
        """
        if not status.is_terminal:
            raise InvalidStateError(f"{status.value} is not a terminal status")

        job = self.get_required(job_id)
        if job.status is not JobStatus.running:
            raise InvalidStateError(
                f"Job {job_id} cannot finish from status {job.status.value}"
            )

        job.status = status
        job.finished_at = datetime.now(timezone.utc)
        job.error_message = None if status is JobStatus.completed else error_message
        self._commit(f"mark job {job_id} {status.value}")
        self.db.refresh(job)
        return job

    def get_by_repository(self, repository_id: int) -> list[IngestionJobModel]:
        """Jobs of a repository, newest first."""
        stmt = (
            select(IngestionJobModel)
            .where(IngestionJobModel.repository_id == repository_id)
            .order_by(IngestionJobModel.id.desc())
        )
        return self._scalars(stmt)
