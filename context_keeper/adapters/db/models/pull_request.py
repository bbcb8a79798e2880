from datetime import datetime
from sqlalchemy import (
    BigInteger,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from context_keeper.adapters.db.base import Base
from context_keeper.adapters.db.types import StringList


class PullRequestModel(Base):
    __tablename__ = "pull_requests"
    __table_args__ = (
        UniqueConstraint("repository_id", "number", name="uq_pull_requests_repo_number"),
        Index("idx_pull_requests_repo_created", "repository_id", "created_at"),
        Index("idx_pull_requests_repo_author", "repository_id", "author"),
    )

    # GitHub id, not generated locally
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)

    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repos.id", ondelete="CASCADE"), nullable=False
    )

    number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    state: Mapped[str] = mapped_column(String(50), nullable=False)  # open/closed/merged

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    merged_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    files_changed: Mapped[list[str]] = mapped_column(StringList, nullable=False, default=list)
    labels: Mapped[list[str]] = mapped_column(StringList, nullable=False, default=list)
