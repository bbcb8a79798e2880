from datetime import datetime
from sqlalchemy import ForeignKey, Index, String, Text, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from context_keeper.adapters.db.base import Base
from context_keeper.adapters.db.types import StringList


class CommitModel(Base):
    __tablename__ = "commits"
    __table_args__ = (
        Index("idx_commits_repo_created", "repository_id", "created_at"),
        Index("idx_commits_repo_author", "repository_id", "author"),
    )

    sha: Mapped[str] = mapped_column(String(40), primary_key=True)

    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repos.id", ondelete="CASCADE"), nullable=False
    )

    message: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str] = mapped_column(String(255), nullable=False)

    # authored date reported by GitHub
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    files_changed: Mapped[list[str]] = mapped_column(StringList, nullable=False, default=list)
