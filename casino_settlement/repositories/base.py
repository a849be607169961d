"""
Base repository class for data access layer.

The repository pattern provides:
1. Separation of data access logic from business logic
2. Single place for query logic (easier to maintain)
3. Consistent interface for data operations

Repositories never commit. The caller owns the transaction boundary
(see casino_settlement.services.settlement.settlement_scope).

Example:
    class CoinflipRepository(BaseRepository[CoinflipGame]):
        def find_waiting(self) -> List[CoinflipGame]:
            return self.where(CoinflipGame.status == "waiting")
"""
from abc import ABC
from typing import TypeVar, Generic, Type, Optional, List, Any, Dict

from sqlalchemy import func, update, delete
from sqlalchemy.orm import Query, Session

T = TypeVar("T")


class BaseRepository(Generic[T], ABC):
    """
    Base repository class providing common data access methods.

    Attributes:
        model_type: The SQLAlchemy model class this repository manages
        db: The database session
    """

    def __init__(self, model_type: Type[T], db: Session):
        self.model_type = model_type
        self.db = db

    # ========================================================================
    # CRUD Operations
    # ========================================================================

    def find_by_id(self, id: str) -> Optional[T]:
        """Find a single record by ID."""
        return self.db.query(self.model_type).filter(self.model_type.id == id).first()

    def find_by_id_for_update(self, id: str) -> Optional[T]:
        """Find a record by ID and lock its row until the transaction ends."""
        return (
            self.db.query(self.model_type)
            .filter(self.model_type.id == id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def create(self, **kwargs) -> T:
        """
        Create a new record.

        Returns:
            The created record (flushed, not committed)
        """
        instance = self.model_type(**kwargs)
        self.db.add(instance)
        self.db.flush()
        return instance

    def delete_instance(self, instance: T) -> None:
        self.db.delete(instance)

    # ========================================================================
    # Query Builders
    # ========================================================================

    def query(self) -> Query:
        """Get a new query object for this model."""
        return self.db.query(self.model_type)

    def where(self, *criterion) -> List[T]:
        """Filter records using SQLAlchemy expressions."""
        return self.db.query(self.model_type).filter(*criterion).all()

    def where_first(self, *criterion) -> Optional[T]:
        """Filter records using SQLAlchemy expressions and return first match."""
        return self.db.query(self.model_type).filter(*criterion).first()

    def exists_where(self, *criterion) -> bool:
        """Check if any record matching the criterion exists."""
        return self.db.query(
            self.db.query(self.model_type).filter(*criterion).exists()
        ).scalar()

    def count(self, *criterion) -> int:
        """Count records matching optional criterion."""
        query = self.db.query(func.count(self.model_type.id))
        if criterion:
            query = query.filter(*criterion)
        return query.scalar() or 0

    # ========================================================================
    # Conditional Writes
    # ========================================================================

    def update_where(self, criterion: List[Any], values: Dict[str, Any]) -> int:
        """
        Issue a single UPDATE ... WHERE and return the affected row count.

        Loaded instances are refreshed from the database so later reads in
        the same session see the new values.
        """
        result = self.db.execute(
            update(self.model_type)
            .where(*criterion)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def transition(self, id: str, from_status, **values) -> bool:
        """
        Move a record out of `from_status` (a status string or a tuple of them).

        This is the claim step of every settlement: of any number of
        concurrent callers, exactly one sees True.
        """
        statuses = from_status if isinstance(from_status, (tuple, list)) else (from_status,)
        return self.update_where(
            [self.model_type.id == id, self.model_type.status.in_(statuses)],
            values,
        ) == 1

    def delete_where(self, *criterion) -> int:
        """Bulk delete and return the affected row count."""
        result = self.db.execute(
            delete(self.model_type)
            .where(*criterion)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    # ========================================================================
    # Session Operations
    # ========================================================================

    def flush(self) -> None:
        """Flush pending changes without committing."""
        self.db.flush()

    def refresh(self, instance: T) -> T:
        """Refresh an instance from the database."""
        self.db.refresh(instance)
        return instance
