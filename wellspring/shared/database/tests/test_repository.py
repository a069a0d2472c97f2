"""Tests for base repository pattern."""
import pytest
from unittest.mock import MagicMock
from dataclasses import dataclass
from typing import Any, Dict

from wellspring.shared.utils import configure_pii_salt
from wellspring.shared.database.repository import (
    BaseRepository,
    RepositoryError,
    NotFoundError,
    DuplicateError,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@dataclass
class SampleEntity:
    id: str
    name: str
    value: int


class SampleRepository(BaseRepository[SampleEntity]):
    """Concrete repository for testing."""

    def _row_to_entity(self, row: tuple) -> SampleEntity:
        return SampleEntity(id=row[0], name=row[1], value=row[2])

    def _entity_to_params(self, entity: SampleEntity) -> Dict[str, Any]:
        return {
            "id": entity.id,
            "name": entity.name,
            "value": entity.value,
        }


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def connection(cursor):
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn


@pytest.fixture
def repository(connection):
    manager = MagicMock()
    manager.get_connection.return_value.__enter__.return_value = connection
    return SampleRepository(manager, "sample_table")


class TestRepositoryExceptions:
    def test_not_found_error(self):
        assert isinstance(NotFoundError("missing"), RepositoryError)

    def test_duplicate_error(self):
        assert isinstance(DuplicateError("dup"), RepositoryError)


class TestBaseRepository:
    def test_find_by_id(self, repository, cursor):
        cursor.fetchall.return_value = [("id_1", "name", 42)]

        entity = repository.find_by_id("id_1")

        assert entity == SampleEntity(id="id_1", name="name", value=42)
        query, params = cursor.execute.call_args.args
        assert "FROM sample_table WHERE id = %s" in query
        assert "LIMIT %s" in query
        assert params == ["id_1", 1]

    def test_find_by_id_missing(self, repository, cursor):
        cursor.fetchall.return_value = []

        assert repository.find_by_id("nope") is None

    def test_find_where_orders_results(self, repository, cursor):
        cursor.fetchall.return_value = [("a", "x", 1), ("b", "y", 2)]

        entities = repository.find_where("value > %s", (0,), order_by="value ASC")

        assert [e.id for e in entities] == ["a", "b"]
        query, params = cursor.execute.call_args.args
        assert query.endswith("ORDER BY value ASC")
        assert params == [0]

    def test_find_where_wraps_errors(self, repository, cursor):
        cursor.execute.side_effect = RuntimeError("connection reset")

        with pytest.raises(RepositoryError):
            repository.find_where("1=1", ())

    def test_save_upserts_and_commits(self, repository, cursor, connection):
        entity = SampleEntity(id="id_1", name="test", value=100)

        saved = repository.save(entity)

        assert saved is entity
        query, params = cursor.execute.call_args.args
        assert "ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, value = EXCLUDED.value" in query
        assert params == ["id_1", "test", 100]
        connection.commit.assert_called_once()

    def test_save_wraps_errors(self, repository, cursor):
        cursor.execute.side_effect = RuntimeError("disk full")

        with pytest.raises(RepositoryError):
            repository.save(SampleEntity(id="id_1", name="x", value=1))
