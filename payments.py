from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from db import PersistError
from ledger import AppendResult, TransactionLedger, TransactionStore
from models import Transaction, User, now_utc
from plans import PlanCatalog
from reconciler import (
    Clock,
    Mode,
    PlanReconciler,
    ReconcileResult,
    SkipReason,
    UserUpdater,
    is_successful,
)
from references import UserLookup, resolve_user
from worker import BackgroundWorker

logger = logging.getLogger("planledger.payments")


class PaymentStore(TransactionStore, UserLookup, UserUpdater, Protocol):
    def get_user_by_id(self, user_id: str) -> User | None: ...


@dataclass(frozen=True)
class CallbackResult:
    status: AppendResult
    reconcile: ReconcileResult | None = None

    @property
    def duplicate(self) -> bool:
        return self.status is AppendResult.DUPLICATE


class PaymentService:
    """Entry points used by the HTTP layer.

    ``record_callback`` is the write path and runs inline. The listing and
    lookup calls return straight away and queue read-mode reconciliation of
    what they returned on the background worker.
    """

    def __init__(
        self,
        store: PaymentStore,
        catalog: PlanCatalog,
        worker: BackgroundWorker,
        *,
        clock: Clock = now_utc,
        timeout_seconds: float = 5.0,
        alert: Callable[[str, str], None] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.ledger = TransactionLedger(store)
        self.reconciler = PlanReconciler(catalog, store, clock)
        self.worker = worker
        self.clock = clock
        self._timeout_seconds = timeout_seconds
        self._alert = alert
        self._monotonic = monotonic

    def start(self) -> None:
        self.worker.start()

    def shutdown(self) -> None:
        self.worker.stop(drain=True)

    def record_callback(self, tx: Transaction) -> CallbackResult:
        started = self._monotonic()
        status = self.ledger.append(tx)
        if status is AppendResult.DUPLICATE:
            return CallbackResult(status)
        if not is_successful(tx):
            return CallbackResult(status, ReconcileResult.skipped(SkipReason.NOT_SUCCESSFUL))

        try:
            user = resolve_user(self.store, tx.external_reference)
        except PersistError:
            logger.exception("Failed to look up the user for %s.", tx.external_reference)
            return CallbackResult(status, ReconcileResult.skipped(SkipReason.PERSIST_FAILED))
        if user is None:
            logger.warning("No user matches reference %s; plan not applied.", tx.external_reference)
            return CallbackResult(status, ReconcileResult.skipped(SkipReason.USER_NOT_RESOLVED))

        if self._monotonic() - started > self._timeout_seconds:
            logger.warning(
                "Callback deadline passed before applying %s to user %s; left for the sweep.",
                tx.external_reference,
                user.id,
            )
            return CallbackResult(status, ReconcileResult.skipped(SkipReason.DEFERRED))

        try:
            result = self.reconciler.reconcile(user, tx, Mode.WRITE)
        except PersistError as exc:
            logger.exception(
                "Failed to update plan for user %s from %s.", user.id, tx.external_reference
            )
            if self._alert is not None:
                self._alert("Plan update failed", str(exc))
            return CallbackResult(status, ReconcileResult.skipped(SkipReason.PERSIST_FAILED))
        return CallbackResult(status, result)

    def list_and_reconcile(self, limit: int | None = None) -> list[Transaction]:
        transactions = self.ledger.list(limit)
        for tx in transactions:
            self._schedule(tx)
        return transactions

    def lookup_by_reference(self, reference: str) -> Transaction | None:
        tx = self.ledger.find_by_reference(reference)
        if tx is not None:
            self._schedule(tx)
        return tx

    def _schedule(self, tx: Transaction) -> None:
        if is_successful(tx):
            self.worker.submit(self.heal, tx)

    def heal(self, tx: Transaction) -> ReconcileResult | None:
        """Re-check one historical transaction against its user (read mode)."""
        try:
            user = resolve_user(self.store, tx.external_reference)
            if user is None:
                logger.warning("No user matches reference %s; skipping.", tx.external_reference)
                return ReconcileResult.skipped(SkipReason.USER_NOT_RESOLVED)
            result = self.reconciler.reconcile(user, tx, Mode.READ)
        except PersistError:
            logger.exception("Sweep failed for %s.", tx.external_reference)
            return None
        logger.debug("Sweep of %s: %s %s", tx.external_reference, result.outcome.value, result.reason)
        return result
