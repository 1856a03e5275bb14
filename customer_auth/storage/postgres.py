from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from customer_auth.logging import get_logger
from customer_auth.storage.errors import ConstraintViolation
from customer_auth.storage.models import Customer, TrustedDevice

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS customer (
        id UUID PRIMARY KEY,
        phone TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        hashed_password TEXT NOT NULL,
        gender CHAR(1),
        birth_date DATE,
        image_url TEXT,
        lang TEXT NOT NULL DEFAULT 'en',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS customer_device (
        customer_id UUID NOT NULL REFERENCES customer(id) ON DELETE CASCADE,
        device_id TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (customer_id, device_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS customer_saved_service (
        customer_id UUID NOT NULL REFERENCES customer(id) ON DELETE CASCADE,
        service_id TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (customer_id, service_id)
    )
    """,
)


class PostgresStore:
    """Postgres-backed customer repository."""

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the customer tables if they are missing."""

        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _customer_from_row(row: dict[str, Any]) -> Customer:
        return Customer(
            id=str(row["id"]),
            phone=row["phone"],
            name=row["name"],
            hashed_password=row["hashed_password"],
            gender=row.get("gender"),
            birth_date=row.get("birth_date"),
            image_url=row.get("image_url"),
            lang=row.get("lang") or "en",
            created_at=row.get("created_at") or datetime.now(timezone.utc),
        )

    # customers
    def get_customer(self, customer_id: str) -> Optional[Customer]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM customer WHERE id = %s", (customer_id,)
            ).fetchone()
        return self._customer_from_row(row) if row else None

    def get_customer_by_phone(self, phone: str) -> Optional[Customer]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM customer WHERE phone = %s", (phone,)
            ).fetchone()
        return self._customer_from_row(row) if row else None

    def create_customer(self, name: str, phone: str, hashed_password: str) -> Customer:
        customer_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO customer (id, phone, name, hashed_password)
                    VALUES (%s, %s, %s, %s)
                    RETURNING *
                    """,
                    (customer_id, phone, name, hashed_password),
                ).fetchone()
        except errors.UniqueViolation as exc:
            raise ConstraintViolation("phone already exists", {"field": "phone"}) from exc
        self.logger.info("customer_created", customer_id=customer_id)
        return self._customer_from_row(row)

    def update_customer(self, customer: Customer) -> Optional[Customer]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE customer
                SET name = %s, hashed_password = %s, image_url = %s, gender = %s, birth_date = %s
                WHERE id = %s
                RETURNING *
                """,
                (
                    customer.name,
                    customer.hashed_password,
                    customer.image_url,
                    customer.gender,
                    customer.birth_date,
                    customer.id,
                ),
            ).fetchone()
        return self._customer_from_row(row) if row else None

    def update_customer_lang(self, customer_id: str, lang: str) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE customer SET lang = %s WHERE id = %s", (lang, customer_id)
            )
            return result.rowcount > 0

    def delete_customer(self, customer_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM customer WHERE id = %s", (customer_id,))
            return result.rowcount > 0

    # trusted devices
    def create_trusted_device(self, customer_id: str, device_id: str) -> TrustedDevice:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO customer_device (customer_id, device_id)
                    VALUES (%s, %s)
                    ON CONFLICT (customer_id, device_id) DO NOTHING
                    """,
                    (customer_id, device_id),
                )
                row = conn.execute(
                    "SELECT * FROM customer_device WHERE customer_id = %s AND device_id = %s",
                    (customer_id, device_id),
                ).fetchone()
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation("customer does not exist", {"field": "customer_id"}) from exc
        return TrustedDevice(
            customer_id=str(row["customer_id"]),
            device_id=row["device_id"],
            created_at=row["created_at"],
        )

    def get_trusted_device(self, device_id: str, phone: str) -> Optional[TrustedDevice]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT d.* FROM customer_device d
                JOIN customer c ON c.id = d.customer_id
                WHERE d.device_id = %s AND c.phone = %s
                """,
                (device_id, phone),
            ).fetchone()
        if not row:
            return None
        return TrustedDevice(
            customer_id=str(row["customer_id"]),
            device_id=row["device_id"],
            created_at=row["created_at"],
        )

    # saved services
    def add_saved_service(self, customer_id: str, service_id: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO customer_saved_service (customer_id, service_id)
                    VALUES (%s, %s)
                    ON CONFLICT (customer_id, service_id) DO NOTHING
                    """,
                    (customer_id, service_id),
                )
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation("customer does not exist", {"field": "customer_id"}) from exc

    def remove_saved_service(self, customer_id: str, service_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                "DELETE FROM customer_saved_service WHERE customer_id = %s AND service_id = %s",
                (customer_id, service_id),
            )
            return result.rowcount > 0

    def list_saved_services(self, customer_id: str) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT service_id FROM customer_saved_service
                WHERE customer_id = %s ORDER BY created_at
                """,
                (customer_id,),
            ).fetchall()
        return [row["service_id"] for row in rows]
