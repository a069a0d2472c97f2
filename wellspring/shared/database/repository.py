"""Base repository pattern for PostgreSQL-backed entities."""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar

from .connection import ConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class NotFoundError(RepositoryError):
    """Entity not found in database."""
    pass


class DuplicateError(RepositoryError):
    """Duplicate entity already exists."""
    pass


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with common operations.

    Subclasses provide row/entity conversion and inherit connection
    handling, upserts and error wrapping.
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        table_name: str,
    ):
        self.connection_manager = connection_manager
        self.table_name = table_name

        logger.info(
            "REPOSITORY_INITIALIZED",
            extra={"table_name": table_name}
        )

    @abstractmethod
    def _row_to_entity(self, row: tuple) -> T:
        """Convert database row to entity."""
        pass

    @abstractmethod
    def _entity_to_params(self, entity: T) -> Dict[str, Any]:
        """Convert entity to a column -> value mapping."""
        pass

    def find_by_id(self, entity_id: str) -> Optional[T]:
        """Find entity by ID, or None."""
        rows = self.find_where("id = %s", (entity_id,), limit=1)
        return rows[0] if rows else None

    def find_where(
        self,
        clause: str,
        params: Sequence[Any],
        order_by: str = "created_at DESC",
        limit: Optional[int] = None,
    ) -> List[T]:
        """Find entities matching a parameterised WHERE clause.

        Args:
            clause: SQL condition using %s placeholders
            params: Values for the placeholders
            order_by: ORDER BY expression
            limit: Maximum rows, or None for all

        Raises:
            RepositoryError: If the query fails
        """
        query = f"SELECT * FROM {self.table_name} WHERE {clause} ORDER BY {order_by}"
        values = list(params)
        if limit is not None:
            query += " LIMIT %s"
            values.append(limit)

        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, values)
                    rows = cur.fetchall()
        except Exception as e:
            logger.error(
                "REPOSITORY_QUERY_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Query on {self.table_name} failed: {e}") from e

        return [self._row_to_entity(row) for row in rows]

    def save(self, entity: T) -> T:
        """Insert or update an entity.

        Raises:
            RepositoryError: If the write fails
        """
        params = self._entity_to_params(entity)
        columns = list(params.keys())
        placeholders = ["%s"] * len(columns)
        update_clause = ", ".join(f"{col} = EXCLUDED.{col}" for col in columns if col != "id")

        query = f"""
            INSERT INTO {self.table_name} ({", ".join(columns)})
            VALUES ({", ".join(placeholders)})
            ON CONFLICT (id) DO UPDATE SET {update_clause}
        """

        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, list(params.values()))
                conn.commit()
        except Exception as e:
            logger.error(
                "REPOSITORY_SAVE_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Save to {self.table_name} failed: {e}") from e

        return entity
