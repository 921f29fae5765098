"""Tests for the wallet ledger."""

import pytest

from storyrunner.core.errors import (
    AlreadyRefundedError, BadRequestError, ForbiddenError, InsufficientCreditsError, NotFoundError,
    NotRefundableError,
)
from storyrunner.services import wallet_ledger


def test_debit_appends_transaction_with_balance_after(player):
    tx = wallet_ledger.debit(player.id, 30, source="play", story_id="s", chapter=2)
    assert tx.type == "debit"
    assert tx.amount == 30
    assert tx.balance_after == 70
    assert tx.chapter == 2
    assert wallet_ledger.get_balance(player.id) == 70


def test_credit_increases_balance(player):
    tx = wallet_ledger.credit(player.id, 25, source="topup", note="card")
    assert tx.type == "credit"
    assert tx.balance_after == 125
    assert wallet_ledger.get_balance(player.id) == 125


def test_insufficient_credits_leaves_no_trace(player):
    with pytest.raises(InsufficientCreditsError) as exc_info:
        wallet_ledger.debit(player.id, 101)
    assert exc_info.value.extra == {"needed": 101, "balance": 100}
    assert wallet_ledger.get_balance(player.id) == 100
    items, _ = wallet_ledger.list_transactions(player.id)
    assert items == []


def test_debit_exact_balance(player):
    tx = wallet_ledger.debit(player.id, 100)
    assert tx.balance_after == 0
    with pytest.raises(InsufficientCreditsError):
        wallet_ledger.debit(player.id, 1)


@pytest.mark.parametrize("amount", [0, -5, 2.5, True, "10"])
def test_amount_must_be_positive_int(player, amount):
    with pytest.raises(BadRequestError) as exc_info:
        wallet_ledger.debit(player.id, amount)
    assert exc_info.value.extra["field"] == "amount"


def test_unknown_user():
    with pytest.raises(NotFoundError):
        wallet_ledger.debit("nobody", 5)
    with pytest.raises(NotFoundError):
        wallet_ledger.credit("nobody", 5)


def test_unknown_source(player):
    with pytest.raises(BadRequestError):
        wallet_ledger.credit(player.id, 5, source="lottery")


def test_balance_matches_ledger_sum(player):
    wallet_ledger.debit(player.id, 10)
    wallet_ledger.credit(player.id, 40)
    wallet_ledger.debit(player.id, 15)
    items, _ = wallet_ledger.list_transactions(player.id)
    net = sum(tx.amount if tx.type == "credit" else -tx.amount for tx in items)
    assert wallet_ledger.get_balance(player.id) == 100 + net
    # newest first, and each snapshot follows from the one before it
    assert [tx.balance_after for tx in items] == [115, 130, 90]


class TestRefunds:
    def test_refund_transaction(self, player):
        debit = wallet_ledger.debit(player.id, 10, story_id="s", chapter=2)
        refund = wallet_ledger.refund_transaction(player.id, debit.id)
        assert refund.type == "credit"
        assert refund.source == "refund"
        assert refund.refund_of == debit.id
        assert refund.chapter == 2
        assert refund.balance_after == 100

    def test_refund_twice(self, player):
        debit = wallet_ledger.debit(player.id, 10)
        wallet_ledger.refund_transaction(player.id, debit.id)
        with pytest.raises(AlreadyRefundedError):
            wallet_ledger.refund_transaction(player.id, debit.id)
        assert wallet_ledger.get_balance(player.id) == 100

    def test_refund_of_credit_is_refused(self, player):
        credit = wallet_ledger.credit(player.id, 10)
        with pytest.raises(NotRefundableError):
            wallet_ledger.refund_transaction(player.id, credit.id)

    def test_refund_of_other_users_debit(self, player, other_player):
        debit = wallet_ledger.debit(other_player.id, 10)
        with pytest.raises(ForbiddenError):
            wallet_ledger.refund_transaction(player.id, debit.id)

    def test_refund_missing_transaction(self, player):
        with pytest.raises(NotFoundError):
            wallet_ledger.refund_transaction(player.id, 9999)


class TestHistory:
    def test_cursor_pagination(self, player):
        for amount in range(1, 6):
            wallet_ledger.credit(player.id, amount)
        page1, cursor = wallet_ledger.list_transactions(player.id, limit=2)
        assert [tx.amount for tx in page1] == [5, 4]
        page2, cursor = wallet_ledger.list_transactions(player.id, limit=2, before=cursor)
        assert [tx.amount for tx in page2] == [3, 2]
        page3, cursor = wallet_ledger.list_transactions(player.id, limit=2, before=cursor)
        assert [tx.amount for tx in page3] == [1]
        assert cursor is None

    def test_invalid_limit_falls_back_to_default(self, player):
        wallet_ledger.credit(player.id, 1)
        items, cursor = wallet_ledger.list_transactions(player.id, limit=0)
        assert len(items) == 1
        assert cursor is None

    def test_serialisation(self, player):
        tx = wallet_ledger.debit(player.id, 10, story_id="s", session_id="sess", chapter=1)
        data = tx.to_dict()
        assert data["balanceAfter"] == 90
        assert data["storyId"] == "s"
        assert data["sessionId"] == "sess"
        assert data["refundOf"] is None
        assert set(data) == {"id", "type", "source", "amount", "balanceAfter", "note", "storyId",
                             "sessionId", "chapter", "refundOf", "createdAt"}

    def test_stats(self, player, other_player):
        wallet_ledger.credit(player.id, 50)
        wallet_ledger.debit(player.id, 20)
        wallet_ledger.debit(other_player.id, 10)
        stats = wallet_ledger.transaction_stats()
        assert stats["totalTransactions"] == 3
        assert stats["totalCredits"] == 50
        assert stats["totalDebits"] == 30
        assert stats["net"] == 20
        assert stats["uniqueUsers"] == 2
        assert stats["averageAmount"] == pytest.approx(26.67)
