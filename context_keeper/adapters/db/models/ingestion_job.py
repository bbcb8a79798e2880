from datetime import datetime
from sqlalchemy import (
    BigInteger,
    ForeignKey,
    Integer,
    String,
    Text,
    TIMESTAMP,
    func,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from context_keeper.adapters.db.base import Base
from context_keeper.data.enums.job_status import JobStatus


class IngestionJobModel(Base):
    """Ingestion of one repository: pending -> running -> completed/partial/failed."""
    __tablename__ = "ingestion_jobs"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True
    )
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repos.id", ondelete="CASCADE"), nullable=False, index=True
    )

    status: Mapped[JobStatus] = mapped_column(
        SAEnum(JobStatus, name="ingestion_job_status", native_enum=False, length=50),
        nullable=False,
        default=JobStatus.pending,
    )

    requested_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    started_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
