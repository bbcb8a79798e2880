from datetime import datetime

from pydantic import BaseModel, ConfigDict

from context_keeper.data.enums.job_status import JobStatus


class IngestionJob(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    repository_id: int
    status: JobStatus
    requested_by: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime | None = None
