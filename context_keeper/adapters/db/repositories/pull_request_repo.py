from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy import select

from context_keeper.adapters.db.models.pull_request import PullRequestModel
from context_keeper.adapters.db.repositories.base_repository import RepositoryScopedRepository
from context_keeper.core.exceptions import PersistenceError
from context_keeper.data.domain.pull_request import PullRequest


class PullRequestRepository(RepositoryScopedRepository[PullRequestModel]):
    def __init__(self, db: Session):
        super().__init__(db, PullRequestModel)

    def get_by_repo_and_number(
        self, repository_id: int, number: int
    ) -> PullRequestModel | None:
        stmt = select(PullRequestModel).where(
            PullRequestModel.repository_id == repository_id,
            PullRequestModel.number == number,
        )
        return self._scalar(stmt)

    def upsert(self, repository_id: int, pr: PullRequest) -> PullRequestModel:
        """
        Inserts the pull request or, if (repository_id, number) exists, overwrites
        its mutable fields. id, author and created_at of an existing row are kept.
        """
        try:
            existing = self.get_by_repo_and_number(repository_id, pr.number)
            if existing:
                existing.title = pr.title
                existing.body = pr.body
                existing.state = pr.state
                existing.merged_at = pr.merged_at
                existing.files_changed = list(pr.files_changed)
                existing.labels = list(pr.labels)
                instance = existing
            else:
                instance = PullRequestModel(
                    id=pr.id,
                    repository_id=repository_id,
                    number=pr.number,
                    title=pr.title,
                    body=pr.body,
                    author=pr.author,
                    state=pr.state,
                    created_at=pr.created_at,
                    merged_at=pr.merged_at,
                    files_changed=list(pr.files_changed),
                    labels=list(pr.labels),
                )
                self.db.add(instance)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to upsert pull request #{pr.number}: {e}") from e

        return instance
