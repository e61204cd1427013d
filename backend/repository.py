"""
Thin persistence layer over a SQLAlchemy session.

Services talk to the store only through ``Repository`` so that every write
failure surfaces as a PersistenceError and the session is rolled back.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import PersistenceError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


class Repository:
    def __init__(self, db: Session):
        self.db = db

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database write failed: {e}")
            raise PersistenceError("Database write failed") from e

    def create(self, entity: ModelT) -> ModelT:
        self.db.add(entity)
        self._commit()
        self.db.refresh(entity)
        logger.debug(f"Created {type(entity).__name__} id={getattr(entity, 'id', None)}")
        return entity

    def save(self, entity: ModelT) -> ModelT:
        """Persist in-place changes made to an already loaded entity."""
        self._commit()
        self.db.refresh(entity)
        return entity

    def find_by_id(self, model: Type[ModelT], entity_id: int, options: Sequence[Any] = ()) -> Optional[ModelT]:
        try:
            query = self.db.query(model)
            if options:
                query = query.options(*options)
            return query.filter(model.id == entity_id).first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load {model.__name__} {entity_id}: {e}")
            raise PersistenceError("Database read failed") from e

    def find_one(self, model: Type[ModelT], *criteria: Any) -> Optional[ModelT]:
        try:
            return self.db.query(model).filter(*criteria).first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to query {model.__name__}: {e}")
            raise PersistenceError("Database read failed") from e

    def find_many(
        self,
        model: Type[ModelT],
        *criteria: Any,
        skip: int = 0,
        limit: Optional[int] = None,
        order_by: Sequence[Any] = (),
        options: Sequence[Any] = (),
    ) -> List[ModelT]:
        try:
            query = self.db.query(model)
            if options:
                query = query.options(*options)
            if criteria:
                query = query.filter(*criteria)
            if order_by:
                query = query.order_by(*order_by)
            if skip:
                query = query.offset(skip)
            if limit is not None:
                query = query.limit(limit)
            return query.all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to query {model.__name__}: {e}")
            raise PersistenceError("Database read failed") from e

    def count_matching(self, model: Type[ModelT], *criteria: Any) -> int:
        try:
            return self.db.query(model).filter(*criteria).count()
        except SQLAlchemyError as e:
            logger.error(f"Failed to count {model.__name__}: {e}")
            raise PersistenceError("Database read failed") from e

    def update_by_id(self, model: Type[ModelT], entity_id: int, patch: Dict[str, Any]) -> Optional[ModelT]:
        """Apply ``patch`` to the entity with ``entity_id``. Returns None when it doesn't exist."""
        entity = self.find_by_id(model, entity_id)
        if entity is None:
            return None
        for attribute, value in patch.items():
            setattr(entity, attribute, value)
        return self.save(entity)

    def delete(self, entity: Any) -> None:
        self.db.delete(entity)
        self._commit()

    def delete_by_id(self, model: Type[ModelT], entity_id: int) -> bool:
        entity = self.find_by_id(model, entity_id)
        if entity is None:
            return False
        self.delete(entity)
        return True

    def delete_matching(self, model: Type[ModelT], *criteria: Any) -> int:
        try:
            deleted = self.db.query(model).filter(*criteria).delete(synchronize_session=False)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete {model.__name__} rows: {e}")
            raise PersistenceError("Database write failed") from e
        self._commit()
        return deleted
