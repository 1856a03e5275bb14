from contextlib import contextmanager
from datetime import date

import pytest
from psycopg import errors

from customer_auth.logging import get_logger
from customer_auth.storage.errors import ConstraintViolation
from customer_auth.storage.postgres import PostgresStore


class RaisingConnection:
    def __init__(self, exc):
        self.exc = exc
        self.statements = []

    def execute(self, sql, params=None):
        self.statements.append((sql, params))
        raise self.exc


class DummyPool:
    def __init__(self, conn):
        self.conn = conn

    @contextmanager
    def connection(self):
        yield self.conn


def _store(conn) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.pool = DummyPool(conn)
    store.logger = get_logger(__name__)
    return store


def test_customer_from_row_defaults():
    """Rows without optional columns map to a customer with English as language."""
    customer = PostgresStore._customer_from_row(
        {
            "id": "6d3c5c2e-0000-4000-8000-000000000000",
            "phone": "998901234567",
            "name": "Alice",
            "hashed_password": "hash",
            "birth_date": date(1990, 5, 17),
            "lang": None,
        }
    )

    assert customer.lang == "en"
    assert customer.birth_date == date(1990, 5, 17)
    assert customer.image_url is None


def test_duplicate_phone_maps_to_constraint_violation():
    store = _store(RaisingConnection(errors.UniqueViolation("duplicate key")))

    with pytest.raises(ConstraintViolation) as exc_info:
        store.create_customer("Alice", "998901234567", "hash")

    assert exc_info.value.detail == {"field": "phone"}
    assert isinstance(exc_info.value.__cause__, errors.UniqueViolation)


def test_missing_customer_maps_to_constraint_violation():
    store = _store(RaisingConnection(errors.ForeignKeyViolation("fk")))

    with pytest.raises(ConstraintViolation) as exc_info:
        store.create_trusted_device("6d3c5c2e-0000-4000-8000-000000000000", "device-1")
    assert isinstance(exc_info.value.__cause__, errors.ForeignKeyViolation)
    with pytest.raises(ConstraintViolation):
        store.add_saved_service("6d3c5c2e-0000-4000-8000-000000000000", "svc-1")
