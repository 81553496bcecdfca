from typing import Any, Dict, Generic, Optional, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from report_engine.utils.logging import get_logger

# Generic type for SQLAlchemy models
ModelType = TypeVar("ModelType")

LOGGER = get_logger(__name__)


class BaseRepository(Generic[ModelType]):
    """Base repository with lookup and column checks shared by the report tables."""

    def __init__(self, session: AsyncSession, model: Type[ModelType]):
        """Initialize the repository.

        Args:
            session: SQLAlchemy async session
            model: The SQLAlchemy model class this repository manages
        """
        self.session = session
        self.model = model
        self.logger = LOGGER

    def _column_names(self) -> set:
        return {column.name for column in self.model.__table__.columns}

    def _check_columns(self, values: Dict[str, Any]) -> None:
        unknown = set(values) - self._column_names()
        if unknown:
            raise ValueError(f"Unknown {self.model.__name__} columns: {sorted(unknown)}")

    async def get_by_id(self, id: Any) -> Optional[ModelType]:
        """Get a record by its primary key."""
        try:
            return await self.session.get(self.model, id)
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error retrieving {self.model.__name__} by ID {id}: {str(e)}",
                exc_info=True,
            )
            raise
