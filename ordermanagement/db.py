import logging
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional

import psycopg2

from ordermanagement.config import DATABASE_URL
from ordermanagement.errors import ConflictError, NotFoundError, TransientInfrastructureError
from ordermanagement.models import Order, OrderStatus
from ordermanagement.store import OrderStore

logger = logging.getLogger(__name__)

_COLUMNS = "id, customer_name, product_name, quantity, status, created_at, processed_at"

SCHEMA = """
CREATE TABLE IF NOT EXISTS orders (
    id BIGSERIAL PRIMARY KEY,
    customer_name VARCHAR(100) NOT NULL,
    product_name VARCHAR(100) NOT NULL,
    quantity INTEGER NOT NULL CHECK (quantity > 0),
    status VARCHAR(20) NOT NULL
        CHECK (status IN ('NEW', 'PROCESSED', 'CANCELLED', 'ERROR_JMS')),
    created_at TIMESTAMPTZ NOT NULL,
    processed_at TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS orders_created_at_idx ON orders (created_at DESC);
CREATE INDEX IF NOT EXISTS orders_status_idx ON orders (status);
"""


@contextmanager
def db_conn(dsn: Optional[str] = None):
    """
    One short transaction: commit on success, rollback on error, always close.
    Connection-level psycopg2 failures surface as TransientInfrastructureError.
    """
    dsn = dsn or DATABASE_URL
    if not dsn:
        raise RuntimeError("DATABASE_URL not set")

    try:
        conn = psycopg2.connect(dsn)
    except psycopg2.OperationalError as e:
        raise TransientInfrastructureError(f"database unavailable: {e}") from e

    try:
        yield conn
        conn.commit()
    except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
        _rollback_quietly(conn)
        raise TransientInfrastructureError(f"database error: {e}") from e
    except Exception:
        _rollback_quietly(conn)
        raise
    finally:
        conn.close()


def _rollback_quietly(conn):
    try:
        conn.rollback()
    except psycopg2.Error as e:
        logger.warning(f"rollback failed err={e}")


def init_db(dsn: Optional[str] = None):
    with db_conn(dsn) as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA)
    logger.info("orders schema ready")


def _row_to_order(row) -> Order:
    return Order(
        id=row[0],
        customer_name=row[1],
        product_name=row[2],
        quantity=row[3],
        status=OrderStatus(row[4]),
        created_at=row[5],
        processed_at=row[6],
    )


class PostgresOrderStore(OrderStore):
    """
    psycopg2-backed store. update() locks the row with SELECT ... FOR UPDATE
    and writes it back inside the same transaction, so conflicting writers to
    one id are serialized by PostgreSQL and nothing is held afterwards.
    """

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or DATABASE_URL
        if not self.dsn:
            raise RuntimeError("DATABASE_URL not set")

    def insert(self, order: Order) -> int:
        with db_conn(self.dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO orders (customer_name, product_name, quantity, status, created_at, processed_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        order.customer_name,
                        order.product_name,
                        order.quantity,
                        order.status.value,
                        order.created_at,
                        order.processed_at,
                    ),
                )
                order.id = cur.fetchone()[0]
        return order.id

    def find_by_id(self, order_id: int) -> Optional[Order]:
        with db_conn(self.dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_COLUMNS} FROM orders WHERE id=%s", (order_id,))
                row = cur.fetchone()
        return _row_to_order(row) if row else None

    def update(self, order_id, mutator, expected_status=None) -> Order:
        with db_conn(self.dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM orders WHERE id=%s FOR UPDATE",
                    (order_id,),
                )
                row = cur.fetchone()
                if not row:
                    raise NotFoundError(order_id)

                order = _row_to_order(row)
                if expected_status is not None and order.status != expected_status:
                    raise ConflictError(order_id, expected_status, order.status)

                mutator(order)
                cur.execute(
                    """
                    UPDATE orders
                    SET customer_name=%s,
                        product_name=%s,
                        quantity=%s,
                        status=%s,
                        processed_at=%s
                    WHERE id=%s
                    """,
                    (
                        order.customer_name,
                        order.product_name,
                        order.quantity,
                        order.status.value,
                        order.processed_at,
                        order_id,
                    ),
                )
        order.id = order_id
        return order

    def delete(self, order_id: int) -> bool:
        with db_conn(self.dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM orders WHERE id=%s", (order_id,))
                return cur.rowcount > 0

    def list_all_ordered_by_created_at_desc(self) -> List[Order]:
        with db_conn(self.dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_COLUMNS} FROM orders ORDER BY created_at DESC, id DESC")
                rows = cur.fetchall()
        return [_row_to_order(r) for r in rows]

    def list_by_status(self, status: OrderStatus, created_before: Optional[datetime] = None) -> List[Order]:
        q = f"SELECT {_COLUMNS} FROM orders WHERE status=%s"
        params = [status.value]
        if created_before is not None:
            q += " AND created_at < %s"
            params.append(created_before)
        q += " ORDER BY created_at ASC, id ASC"

        with db_conn(self.dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(q, params)
                rows = cur.fetchall()
        return [_row_to_order(r) for r in rows]
