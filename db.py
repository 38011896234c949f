from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from models import PlanUpdate, Transaction, User


class PersistError(RuntimeError):
    """Raised when the database rejects or fails a read or write."""


USER_COLUMNS = (
    "id",
    "username",
    "email",
    "plan",
    "plan_name",
    "amount",
    "price",
    "duration",
    "phone_number",
    "expire_duration",
    "expiry_timestamp",
    "updated_at",
)

TRANSACTION_COLUMNS = (
    "id",
    "external_reference",
    "mpesa_receipt_number",
    "checkout_request_id",
    "merchant_request_id",
    "amount",
    "phone_number",
    "result_code",
    "result_description",
    "status",
    "created_at",
    "updated_at",
)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        username TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        plan TEXT NOT NULL DEFAULT '',
        plan_name TEXT NOT NULL DEFAULT '',
        amount INTEGER NOT NULL DEFAULT 0,
        price TEXT NOT NULL DEFAULT '',
        duration TEXT NOT NULL DEFAULT '',
        phone_number TEXT NOT NULL DEFAULT '',
        expire_duration BIGINT NOT NULL DEFAULT 0,
        expiry_timestamp BIGINT NOT NULL DEFAULT 0
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        external_reference TEXT NOT NULL UNIQUE,
        mpesa_receipt_number TEXT NOT NULL DEFAULT '',
        checkout_request_id TEXT NOT NULL DEFAULT '',
        merchant_request_id TEXT NOT NULL DEFAULT '',
        amount INTEGER NOT NULL,
        phone_number TEXT NOT NULL DEFAULT '',
        result_code INTEGER NOT NULL DEFAULT 0,
        result_description TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS transactions_created_at_idx
    ON transactions (created_at DESC);
    """,
    """
    CREATE INDEX IF NOT EXISTS transactions_phone_idx
    ON transactions (phone_number);
    """,
)


class PostgresStore:
    """User and transaction storage backed by PostgreSQL."""

    def __init__(self, database_url: str, timeout_seconds: float = 5.0) -> None:
        self._database_url = database_url
        self._timeout_seconds = timeout_seconds
        self._schema_ready = False

    def get_connection(self) -> psycopg.Connection:
        timeout_ms = int(self._timeout_seconds * 1000)
        return psycopg.connect(
            self._database_url,
            row_factory=dict_row,
            connect_timeout=max(int(self._timeout_seconds), 1),
            options=f"-c statement_timeout={timeout_ms}",
        )

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    yield cur
        except psycopg.Error as exc:
            raise PersistError(str(exc)) from exc

    def ensure_schema(self) -> None:
        if self._schema_ready:
            return
        with self._cursor() as cur:
            for statement in SCHEMA:
                cur.execute(statement)
        self._schema_ready = True

    def _get_user(self, column: str, value: str) -> User | None:
        self.ensure_schema()
        query = sql.SQL("SELECT {fields} FROM users WHERE {column} = %s").format(
            fields=sql.SQL(", ").join(map(sql.Identifier, USER_COLUMNS)),
            column=sql.Identifier(column),
        )
        with self._cursor() as cur:
            cur.execute(query, (value,))
            row = cur.fetchone()
            return User.from_row(dict(row)) if row else None

    def get_user_by_id(self, user_id: str) -> User | None:
        return self._get_user("id", user_id)

    def get_user_by_email(self, email: str) -> User | None:
        return self._get_user("email", email)

    def get_user_by_username(self, username: str) -> User | None:
        return self._get_user("username", username)

    def update_user(self, user_id: str, update: PlanUpdate) -> bool:
        values = update.as_fields()
        if not values:
            return False
        self.ensure_schema()
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(name)) for name in values
        )
        query = sql.SQL("UPDATE users SET {assignments} WHERE id = %s").format(
            assignments=assignments
        )
        with self._cursor() as cur:
            cur.execute(query, (*values.values(), user_id))
            return cur.rowcount == 1

    def insert_transaction(self, tx: Transaction) -> bool:
        """Insert a transaction; returns False when the reference already exists."""
        self.ensure_schema()
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO transactions (
                    id, external_reference, mpesa_receipt_number, checkout_request_id,
                    merchant_request_id, amount, phone_number, result_code,
                    result_description, status, created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (external_reference) DO NOTHING
                RETURNING id
                """,
                (
                    tx.id,
                    tx.external_reference,
                    tx.mpesa_receipt_number,
                    tx.checkout_request_id,
                    tx.merchant_request_id,
                    tx.amount,
                    tx.phone_number,
                    tx.result_code,
                    tx.result_description,
                    tx.status,
                    tx.created_at,
                    tx.updated_at,
                ),
            )
            return cur.fetchone() is not None

    def get_transaction_by_reference(self, reference: str) -> Transaction | None:
        self.ensure_schema()
        query = sql.SQL("SELECT {fields} FROM transactions WHERE external_reference = %s").format(
            fields=sql.SQL(", ").join(map(sql.Identifier, TRANSACTION_COLUMNS)),
        )
        with self._cursor() as cur:
            cur.execute(query, (reference,))
            row = cur.fetchone()
            return Transaction.from_row(dict(row)) if row else None

    def list_transactions(self, limit: int | None = None) -> list[Transaction]:
        self.ensure_schema()
        query = sql.SQL("SELECT {fields} FROM transactions ORDER BY created_at DESC").format(
            fields=sql.SQL(", ").join(map(sql.Identifier, TRANSACTION_COLUMNS)),
        )
        params: tuple[Any, ...] = ()
        if limit is not None:
            query = query + sql.SQL(" LIMIT %s")
            params = (limit,)
        with self._cursor() as cur:
            cur.execute(query, params)
            return [Transaction.from_row(dict(row)) for row in cur.fetchall()]
