from typing import Any, Callable, Generic, TypeVar, Type
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy import func, select

from context_keeper.core.exceptions import PersistenceError

ModelType = TypeVar("ModelType")
T = TypeVar("T")


class BaseRepository(Generic[ModelType]):
    def __init__(self, db: Session, model: Type[ModelType]):
        self.db = db
        self.model = model

    def create(self, **kwargs) -> ModelType:
        instance = self.model(**kwargs)
        self.db.add(instance)
        self._commit(f"create {self.model.__tablename__}")
        self.db.refresh(instance)
        return instance

    def get_by_id(self, id) -> ModelType | None:
        return self._read(f"load {self.model.__tablename__} {id}", self.db.get, self.model, id)

    def delete(self, id) -> bool:
        instance = self.get_by_id(id)
        if not instance:
            return False

        self.db.delete(instance)
        self._commit(f"delete {self.model.__tablename__}")
        return True

    def count(self) -> int:
        return self._scalar(select(func.count()).select_from(self.model))

    def _commit(self, action: str) -> None:
        """Commits the unit of work; on failure rolls back and raises PersistenceError."""
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to {action}: {e}") from e

    def _read(self, action: str, query: Callable[..., T], *args: Any) -> T:
        """Runs a read; a database failure is rolled back and raised as PersistenceError."""
        try:
            return query(*args)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to {action}: {e}") from e

    def _scalar(self, stmt) -> Any:
        return self._read(f"query {self.model.__tablename__}", self.db.scalar, stmt)

    def _scalars(self, stmt) -> list[ModelType]:
        return self._read(
            f"query {self.model.__tablename__}", lambda: list(self.db.scalars(stmt).all())
        )


class RepositoryScopedRepository(BaseRepository[ModelType]):
    """Content tables owned by a repos row and read back newest first."""

    def get_recent(self, repository_id: int, limit: int) -> list[ModelType]:
        stmt = (
            select(self.model)
            .where(self.model.repository_id == repository_id)
            .order_by(self.model.created_at.desc())
            .limit(limit)
        )
        return self._scalars(stmt)

    def count_by_repository(self, repository_id: int) -> int:
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(self.model.repository_id == repository_id)
        )
        return self._scalar(stmt)

    def get_by_author(self, repository_id: int, author: str, limit: int = 100) -> list[ModelType]:
        stmt = (
            select(self.model)
            .where(
                self.model.repository_id == repository_id,
                self.model.author == author,
            )
            .order_by(self.model.created_at.desc())
            .limit(limit)
        )
        return self._scalars(stmt)
