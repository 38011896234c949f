from datetime import timedelta

import pytest

from conftest import T0, make_tx
from db import PersistError
from ledger import AppendResult, TransactionLedger


def test_append_then_find(store):
    ledger = TransactionLedger(store)
    assert ledger.append(make_tx("bob-001")) is AppendResult.STORED
    found = ledger.find_by_reference("bob-001")
    assert found is not None
    assert found.amount == 500


def test_duplicate_reference_is_reported_not_raised(store):
    ledger = TransactionLedger(store)
    first = make_tx("bob-001", amount=500)
    second = make_tx("bob-001", amount=100, status="Failed")

    assert ledger.append(first) is AppendResult.STORED
    assert ledger.append(second) is AppendResult.DUPLICATE
    assert len(store.transactions) == 1
    assert store.transactions["bob-001"].amount == 500


def test_non_success_transactions_are_kept(store):
    ledger = TransactionLedger(store)
    ledger.append(make_tx("bob-001", status="Failed"))
    ledger.append(make_tx("bob-002", status="Pending"))
    assert {tx.external_reference for tx in ledger.list()} == {"bob-001", "bob-002"}


def test_list_is_newest_first(store):
    ledger = TransactionLedger(store)
    ledger.append(make_tx("a-1", created_at=T0))
    ledger.append(make_tx("a-3", created_at=T0 + timedelta(hours=2)))
    ledger.append(make_tx("a-2", created_at=T0 + timedelta(hours=1)))
    assert [tx.external_reference for tx in ledger.list()] == ["a-3", "a-2", "a-1"]


def test_store_failure_raises_persist_error(store):
    store.fail_inserts = True
    ledger = TransactionLedger(store)
    with pytest.raises(PersistError):
        ledger.append(make_tx("bob-001"))


def test_find_missing_or_empty_reference(store):
    ledger = TransactionLedger(store)
    assert ledger.find_by_reference("nope-1") is None
    assert ledger.find_by_reference("") is None
