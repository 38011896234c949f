from __future__ import annotations

import dataclasses
import threading
from datetime import datetime, timedelta, timezone

import pytest

from db import PersistError
from models import PlanUpdate, Transaction, User
from payments import PaymentService
from plans import DEFAULT_CATALOG
from worker import BackgroundWorker

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class InMemoryStore:
    """Store double with the same contract as db.PostgresStore."""

    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.transactions: dict[str, Transaction] = {}
        self.updates: list[tuple[str, PlanUpdate]] = []
        self.fail_inserts = False
        self.fail_lookups = False
        self.fail_updates_for: set[str] = set()
        self._lock = threading.Lock()

    def add_user(self, user_id: str, email: str | None = None, **fields) -> User:
        user = User(id=user_id, username=fields.pop("username", user_id), email=email or f"{user_id}@example.com", **fields)
        self.users[user.id] = user
        return dataclasses.replace(user)

    def get_user_by_id(self, user_id: str) -> User | None:
        user = self.users.get(user_id)
        return dataclasses.replace(user) if user else None

    def get_user_by_email(self, email: str) -> User | None:
        if self.fail_lookups:
            raise PersistError("lookup failed")
        for user in self.users.values():
            if user.email == email:
                return dataclasses.replace(user)
        return None

    def get_user_by_username(self, username: str) -> User | None:
        if self.fail_lookups:
            raise PersistError("lookup failed")
        for user in self.users.values():
            if user.username == username:
                return dataclasses.replace(user)
        return None

    def update_user(self, user_id: str, update: PlanUpdate) -> bool:
        if user_id in self.fail_updates_for:
            raise PersistError("update failed")
        with self._lock:
            self.updates.append((user_id, update))
            user = self.users.get(user_id)
            if user is None:
                return False
            for name, value in update.as_fields().items():
                setattr(user, name, value)
            return True

    def insert_transaction(self, tx: Transaction) -> bool:
        if self.fail_inserts:
            raise PersistError("insert failed")
        with self._lock:
            if tx.external_reference in self.transactions:
                return False
            self.transactions[tx.external_reference] = dataclasses.replace(tx)
            return True

    def get_transaction_by_reference(self, reference: str) -> Transaction | None:
        tx = self.transactions.get(reference)
        return dataclasses.replace(tx) if tx else None

    def list_transactions(self, limit: int | None = None) -> list[Transaction]:
        rows = sorted(self.transactions.values(), key=lambda tx: tx.created_at, reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return [dataclasses.replace(tx) for tx in rows]


def make_tx(
    reference: str,
    amount: int = 500,
    status: str = "Success",
    created_at: datetime = T0,
    phone_number: str = "0700000000",
) -> Transaction:
    return Transaction(
        external_reference=reference,
        amount=amount,
        phone_number=phone_number,
        status=status,
        created_at=created_at,
        updated_at=created_at,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0 + timedelta(minutes=1))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def alerts() -> list[tuple[str, str]]:
    return []


@pytest.fixture
def service(store, clock, alerts):
    worker = BackgroundWorker(max_queue=64, workers=2)
    svc = PaymentService(
        store,
        DEFAULT_CATALOG,
        worker,
        clock=clock,
        alert=lambda subject, body: alerts.append((subject, body)),
    )
    svc.start()
    yield svc
    svc.shutdown()
