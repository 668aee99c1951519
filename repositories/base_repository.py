"""
Base Repository - Common base class for all autopilot repositories
Implements the shared database operations of the Repository Pattern
"""

from typing import TypeVar, Generic, List, Optional, Dict, Any, Type
from sqlalchemy.orm import Session, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import desc, asc
from enum import Enum
import logging

logger = logging.getLogger(__name__)

# Type variable for model classes
T = TypeVar('T')


class SortOrder(Enum):
    """Sort order options"""
    ASC = "asc"
    DESC = "desc"


class BaseRepository(Generic[T]):
    """
    Base repository with common CRUD operations.

    Services only talk to the database through a repository, so tests can
    swap in Mock(spec=...) instances.
    """

    def __init__(self, session: Session, model_class: Type[T]):
        """
        Initialize repository with database session and model class.

        Args:
            session: SQLAlchemy database session
            model_class: The model class this repository manages
        """
        self.session = session
        self.model_class = model_class

    # CREATE Operations

    def create(self, **kwargs) -> T:
        """
        Create a new entity.

        Args:
            **kwargs: Attributes for the new entity

        Returns:
            Created entity instance

        Raises:
            SQLAlchemyError: If database operation fails
        """
        try:
            entity = self.model_class(**kwargs)
            self.session.add(entity)
            self.session.flush()  # Flush to get ID without committing
            logger.debug(f"Created {self.model_class.__name__} with id {entity.id}")
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    # READ Operations

    def get_by_id(self, entity_id) -> Optional[T]:
        """
        Get entity by ID.

        Args:
            entity_id: Entity ID

        Returns:
            Entity instance or None if not found
        """
        try:
            return self.session.get(self.model_class, entity_id)
        except SQLAlchemyError as e:
            logger.error(f"Error getting {self.model_class.__name__} by id {entity_id}: {e}")
            return None

    def get_all(self, order_by: Optional[str] = None,
                order: SortOrder = SortOrder.ASC) -> List[T]:
        """
        Get all entities with optional ordering.

        Args:
            order_by: Field name to order by
            order: Sort order (ASC or DESC)

        Returns:
            List of all entities
        """
        try:
            query = self.session.query(self.model_class)
            if order_by:
                order_field = getattr(self.model_class, order_by, None)
                if order_field is not None:
                    query = query.order_by(
                        desc(order_field) if order == SortOrder.DESC else asc(order_field)
                    )
            return query.all()
        except SQLAlchemyError as e:
            logger.error(f"Error getting all {self.model_class.__name__}: {e}")
            return []

    def find_by(self, **filters) -> List[T]:
        """
        Find entities by specific field values.

        Args:
            **filters: Field-value pairs to filter by (lists become IN clauses)

        Returns:
            List of matching entities
        """
        try:
            return self._build_query(filters).all()
        except SQLAlchemyError as e:
            logger.error(f"Error finding {self.model_class.__name__} by filters: {e}")
            return []

    def find_one_by(self, **filters) -> Optional[T]:
        """Find the first entity matching the filters, or None."""
        results = self.find_by(**filters)
        return results[0] if results else None

    def count(self, **filters) -> int:
        """
        Count entities matching filters.

        Args:
            **filters: Field-value pairs to filter by

        Returns:
            Count of matching entities
        """
        try:
            return self._build_query(filters).count()
        except SQLAlchemyError as e:
            logger.error(f"Error counting {self.model_class.__name__}: {e}")
            return 0

    # UPDATE Operations

    def update(self, entity: T, **updates) -> T:
        """
        Update an entity with new values.

        Args:
            entity: Entity to update
            **updates: Field-value pairs to update

        Returns:
            Updated entity

        Raises:
            SQLAlchemyError: If database operation fails
        """
        try:
            for field, value in updates.items():
                if hasattr(entity, field):
                    setattr(entity, field, value)
            self.session.flush()
            logger.debug(f"Updated {self.model_class.__name__} with id {entity.id}")
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error updating {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    # DELETE Operations

    def delete(self, entity: T) -> bool:
        """
        Delete an entity.

        Args:
            entity: Entity to delete

        Returns:
            True if successful, False otherwise
        """
        try:
            self.session.delete(entity)
            self.session.flush()
            logger.debug(f"Deleted {self.model_class.__name__} with id {entity.id}")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error deleting {self.model_class.__name__}: {e}")
            self.session.rollback()
            return False

    # Transaction Management

    def commit(self) -> None:
        """Commit the current transaction."""
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.session.rollback()

    def flush(self) -> None:
        """Flush pending changes without committing."""
        self.session.flush()

    # Helper Methods

    def _build_query(self, filters: Optional[Dict[str, Any]] = None) -> Query:
        """
        Build a query with filters.

        Args:
            filters: Dictionary of filters to apply

        Returns:
            SQLAlchemy Query object
        """
        query = self.session.query(self.model_class)

        if filters:
            for field, value in filters.items():
                if not hasattr(self.model_class, field):
                    continue
                column = getattr(self.model_class, field)
                if isinstance(value, (list, tuple, set)):
                    query = query.filter(column.in_(list(value)))
                elif value is None:
                    query = query.filter(column.is_(None))
                else:
                    query = query.filter(column == value)

        return query
