from __future__ import annotations

import enum
import logging
from typing import Protocol

from db import PersistError
from models import Transaction

logger = logging.getLogger("planledger.ledger")


class AppendResult(enum.Enum):
    STORED = "stored"
    DUPLICATE = "duplicate"


class TransactionStore(Protocol):
    def insert_transaction(self, tx: Transaction) -> bool: ...

    def get_transaction_by_reference(self, reference: str) -> Transaction | None: ...

    def list_transactions(self, limit: int | None = None) -> list[Transaction]: ...


class TransactionLedger:
    """Append-only record of gateway callbacks, unique on external reference.

    Every callback is kept whatever its status; only successful ones go on to
    change a user's plan.
    """

    def __init__(self, store: TransactionStore) -> None:
        self._store = store

    def append(self, tx: Transaction) -> AppendResult:
        """Store ``tx`` once.

        A reference that is already recorded yields ``AppendResult.DUPLICATE``
        so the gateway can be told to stop retrying. ``PersistError`` is raised
        only when the store itself fails.
        """
        try:
            inserted = self._store.insert_transaction(tx)
        except PersistError:
            logger.exception("Failed to record transaction %s.", tx.external_reference)
            raise
        if not inserted:
            logger.info("Transaction %s already recorded.", tx.external_reference)
            return AppendResult.DUPLICATE
        logger.info(
            "Recorded transaction %s (amount=%s, status=%s).",
            tx.external_reference,
            tx.amount,
            tx.status,
        )
        return AppendResult.STORED

    def list(self, limit: int | None = None) -> list[Transaction]:
        return self._store.list_transactions(limit)

    def find_by_reference(self, reference: str) -> Transaction | None:
        if not reference:
            return None
        return self._store.get_transaction_by_reference(reference)
