from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from context_keeper.adapters.db.models.issue import IssueModel
from context_keeper.adapters.db.repositories.base_repository import RepositoryScopedRepository
from context_keeper.core.exceptions import PersistenceError
from context_keeper.data.domain.issue import Issue


class IssueRepository(RepositoryScopedRepository[IssueModel]):
    def __init__(self, db: Session):
        super().__init__(db, IssueModel)

    def upsert(self, repository_id: int, issue: Issue) -> IssueModel:
        try:
            existing = self.get_by_id(issue.id)
            if existing:
                existing.title = issue.title
                existing.body = issue.body
                existing.state = issue.state
                existing.closed_at = issue.closed_at
                existing.labels = list(issue.labels)
                instance = existing
            else:
                instance = IssueModel(
                    id=issue.id,
                    repository_id=repository_id,
                    title=issue.title,
                    body=issue.body,
                    author=issue.author,
                    state=issue.state,
                    created_at=issue.created_at,
                    closed_at=issue.closed_at,
                    labels=list(issue.labels),
                )
                self.db.add(instance)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to upsert issue {issue.id}: {e}") from e

        return instance
