from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from context_keeper.adapters.db.models.commit import CommitModel
from context_keeper.adapters.db.repositories.base_repository import RepositoryScopedRepository
from context_keeper.core.exceptions import PersistenceError
from context_keeper.data.domain.commit import Commit


class CommitRepository(RepositoryScopedRepository[CommitModel]):
    def __init__(self, db: Session):
        super().__init__(db, CommitModel)

    def get_by_sha(self, sha: str) -> CommitModel | None:
        return self.get_by_id(sha)

    def upsert(self, repository_id: int, commit: Commit) -> CommitModel:
        # Commits are immutable upstream; an existing sha is rewritten with the same values.
        try:
            existing = self.get_by_sha(commit.sha)
            if existing:
                existing.message = commit.message
                existing.author = commit.author
                existing.created_at = commit.created_at
                existing.files_changed = list(commit.files_changed)
                instance = existing
            else:
                instance = CommitModel(
                    sha=commit.sha,
                    repository_id=repository_id,
                    message=commit.message,
                    author=commit.author,
                    created_at=commit.created_at,
                    files_changed=list(commit.files_changed),
                )
                self.db.add(instance)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to upsert commit {commit.sha[:7]}: {e}") from e

        return instance
