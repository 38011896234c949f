from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol

from db import PersistError
from models import PlanUpdate, Transaction, User, now_utc
from plans import PlanCatalog

logger = logging.getLogger("planledger.reconciler")

Clock = Callable[[], datetime]

SUCCESS_STATUS = "success"


class Mode(enum.Enum):
    # The callback that just arrived; always authoritative for its own window.
    WRITE = "write"
    # Historical transactions re-checked from the read endpoints.
    READ = "read"


class Outcome(enum.Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    EXPIRED = "expired"


class SkipReason(str, enum.Enum):
    NOT_SUCCESSFUL = "not-successful"
    UNKNOWN_AMOUNT = "unknown-amount"
    NOT_ELIGIBLE = "not-eligible"
    USER_NOT_RESOLVED = "user-not-resolved"
    DEFERRED = "deferred"
    PERSIST_FAILED = "persist-failed"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: Outcome
    reason: SkipReason | None = None
    expiry_timestamp: int | None = None

    @classmethod
    def skipped(cls, reason: SkipReason) -> "ReconcileResult":
        return cls(Outcome.SKIPPED, reason)

    @property
    def applied(self) -> bool:
        return self.outcome is Outcome.APPLIED


class UserUpdater(Protocol):
    def update_user(self, user_id: str, update: PlanUpdate) -> bool: ...


def is_successful(tx: Transaction) -> bool:
    return (tx.status or "").lower() == SUCCESS_STATUS


class PlanReconciler:
    """Derive a user's plan fields from a single payment transaction.

    The new expiry is always ``tx.created_at + plan validity``. The clock is
    only consulted to gate historical (read-mode) transactions and to stamp
    ``updated_at``, so reconciling the same transaction twice from the same
    starting state gives the same expiry.
    """

    def __init__(self, catalog: PlanCatalog, store: UserUpdater, clock: Clock = now_utc) -> None:
        self._catalog = catalog
        self._store = store
        self._clock = clock

    def reconcile(self, user: User, tx: Transaction, mode: Mode = Mode.WRITE) -> ReconcileResult:
        if not is_successful(tx):
            return ReconcileResult.skipped(SkipReason.NOT_SUCCESSFUL)

        plan = self._catalog.lookup(tx.amount)
        if plan is None:
            logger.warning(
                "No plan for amount %s (reference %s); leaving user %s unchanged.",
                tx.amount,
                tx.external_reference,
                user.id,
            )
            return ReconcileResult.skipped(SkipReason.UNKNOWN_AMOUNT)

        expected_expiry = tx.created_at_timestamp + plan.validity_seconds
        now = self._clock()

        if mode is Mode.READ:
            if int(now.timestamp()) > expected_expiry:
                return ReconcileResult(Outcome.EXPIRED, expiry_timestamp=expected_expiry)
            if user.has_complete_plan:
                return ReconcileResult.skipped(SkipReason.NOT_ELIGIBLE)

        update = PlanUpdate(
            plan=plan.key,
            plan_name=plan.name,
            amount=tx.amount,
            price=plan.price,
            duration=plan.duration,
            phone_number=tx.phone_number,
            expire_duration=plan.validity_seconds,
            expiry_timestamp=expected_expiry,
            updated_at=now,
        )
        try:
            updated = self._store.update_user(user.id, update)
        except PersistError as exc:
            raise PersistError(
                f"Failed to apply {plan.key} plan to user {user.id} "
                f"from {tx.external_reference}: {exc}"
            ) from exc
        if not updated:
            logger.warning(
                "User %s disappeared before the %s plan from %s could be applied.",
                user.id,
                plan.key,
                tx.external_reference,
            )
            return ReconcileResult.skipped(SkipReason.USER_NOT_RESOLVED)
        logger.info(
            "Applied %s plan to user %s from %s (%s), expires at %s.",
            plan.key,
            user.id,
            tx.external_reference,
            mode.value,
            expected_expiry,
        )
        return ReconcileResult(Outcome.APPLIED, expiry_timestamp=expected_expiry)
