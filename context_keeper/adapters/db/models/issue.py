from datetime import datetime
from sqlalchemy import BigInteger, ForeignKey, Index, String, Text, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from context_keeper.adapters.db.base import Base
from context_keeper.adapters.db.types import StringList


class IssueModel(Base):
    __tablename__ = "issues"
    __table_args__ = (
        Index("idx_issues_repo_created", "repository_id", "created_at"),
        Index("idx_issues_repo_author", "repository_id", "author"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)

    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repos.id", ondelete="CASCADE"), nullable=False
    )

    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    state: Mapped[str] = mapped_column(String(50), nullable=False)  # open/closed

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    labels: Mapped[list[str]] = mapped_column(StringList, nullable=False, default=list)
