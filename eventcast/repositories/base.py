# eventcast/repositories/base.py

"""
Base Repository for Data Access.

Generic repository with the CRUD helpers every eventcast repository shares.
``add``/``delete`` only stage changes; ``save``, ``commit`` and the write
methods of concrete repositories commit.
"""

from abc import ABC
from typing import Generic, TypeVar, List, Optional, Type
from sqlalchemy.orm import Session, Query
from sqlalchemy import select


T = TypeVar('T')


class BaseRepository(ABC, Generic[T]):
    """
    Generic base repository with common CRUD operations.

    Example:
        class CycleRepository(BaseRepository[Cycle]):
            def __init__(self, session: Session):
                super().__init__(session, Cycle)
    """

    def __init__(self, session: Session, model_class: Type[T]):
        self.session = session
        self.model_class = model_class

    # ==================== Basic CRUD Operations ====================

    def get_by_id(self, id) -> Optional[T]:
        """Get entity by primary key ID."""
        return self.session.get(self.model_class, id)

    def get_fresh(self, id) -> Optional[T]:
        """Get entity by ID, overwriting any state cached in the session."""
        return self.session.get(self.model_class, id, populate_existing=True)

    def get_all(self, limit: int = 100, offset: int = 0) -> List[T]:
        """Get all entities with pagination."""
        return list(
            self.session.scalars(select(self.model_class).offset(offset).limit(limit))
        )

    def add(self, entity: T) -> T:
        """Add a new entity to the session."""
        self.session.add(entity)
        return entity

    def delete(self, entity: T) -> None:
        """Delete an entity from the session."""
        self.session.delete(entity)

    def exists(self, id) -> bool:
        return self.get_by_id(id) is not None

    def commit(self) -> None:
        self.session.commit()

    def save(self, entity: T) -> T:
        """Add and commit an entity in one step."""
        self.session.add(entity)
        self.session.commit()
        return entity

    # ==================== Query Building ====================

    def find_one_by(self, **kwargs) -> Optional[T]:
        """Find single entity by attribute filters."""
        return self.session.scalars(select(self.model_class).filter_by(**kwargs)).first()

    def find_all_by(self, **kwargs) -> List[T]:
        """Find all entities matching attribute filters."""
        return list(self.session.scalars(select(self.model_class).filter_by(**kwargs)))

    def query(self) -> Query:
        """Get a base query for the model. Use for complex queries."""
        return self.session.query(self.model_class)
