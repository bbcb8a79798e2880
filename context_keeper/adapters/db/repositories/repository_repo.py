from datetime import datetime, timezone
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy import select

from context_keeper.adapters.db.models.repository import RepositoryModel
from context_keeper.adapters.db.repositories.base_repository import BaseRepository
from context_keeper.core.exceptions import PersistenceError


class RepositoryRepository(BaseRepository[RepositoryModel]):
    def __init__(self, db: Session):
        super().__init__(db, RepositoryModel)

    def get_by_full_name(self, full_name: str) -> RepositoryModel | None:
        stmt = select(RepositoryModel).where(RepositoryModel.full_name == full_name)
        return self._scalar(stmt)

    def get_by_owner(self, owner: str) -> list[RepositoryModel]:
        stmt = (
            select(RepositoryModel)
            .where(RepositoryModel.owner == owner)
            .order_by(RepositoryModel.updated_at.desc(), RepositoryModel.id.desc())
        )
        return self._scalars(stmt)

    def upsert(self, owner: str, name: str) -> RepositoryModel:
        """Creates the repository or refreshes name, owner and updated_at of the existing row."""
        full_name = f"{owner}/{name}"
        try:
            repo = self.get_by_full_name(full_name)
            if repo:
                repo.name = name
                repo.owner = owner
                repo.updated_at = datetime.now(timezone.utc)
            else:
                repo = RepositoryModel(name=name, full_name=full_name, owner=owner)
                self.db.add(repo)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to upsert repository {full_name}: {e}") from e

        self.db.refresh(repo)
        return repo
