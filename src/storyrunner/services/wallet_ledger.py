# --- services/wallet_ledger.py ---

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError

from ..core.errors import (
    AlreadyRefundedError, BadRequestError, ForbiddenError, InsufficientCreditsError,
    NotFoundError, NotRefundableError,
)
from ..database.db_utils import get_db
from ..models.database import User, WalletTransaction, TX_CREDIT, TX_DEBIT, TX_SOURCES

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@contextmanager
def _unit_of_work(db=None):
    """Use the caller's session as-is, or open one and commit it on success"""
    if db is not None:
        yield db
        return
    with get_db() as own_db:
        yield own_db
        own_db.commit()


def _check_amount(amount):
    # bool is an int subclass; reject it explicitly
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise BadRequestError("Amount must be a positive integer", field="amount")


def _check_source(source: str):
    if source not in TX_SOURCES:
        raise BadRequestError(f"Unknown transaction source: {source}", field="source")


def _current_balance(db, user_id: str) -> int:
    balance = db.execute(select(User.wallet_balance).where(User.id == user_id)).scalar_one_or_none()
    if balance is None:
        raise NotFoundError(f"User {user_id} not found")
    return balance


def _append(db, user_id: str, tx_type: str, source: str, amount: int, balance_after: int, note: str = "",
            story_id: Optional[str] = None, session_id: Optional[str] = None, chapter: Optional[int] = None,
            refund_of: Optional[int] = None) -> WalletTransaction:
    tx = WalletTransaction(
        user_id=user_id,
        type=tx_type,
        source=source,
        amount=amount,
        balance_after=balance_after,
        note=note or "",
        story_id=story_id,
        session_id=session_id,
        chapter=chapter,
        refund_of=refund_of,
    )
    db.add(tx)
    db.flush()
    return tx


def debit(user_id: str, amount: int, source: str = "play", note: str = "", story_id: Optional[str] = None,
          session_id: Optional[str] = None, chapter: Optional[int] = None, db=None) -> WalletTransaction:
    """
    Take ``amount`` credits from the user's wallet.

    The balance check and the decrement are one conditional UPDATE
    (``wallet_balance >= amount``), so two concurrent debits can never drive
    the balance below zero. The transaction row is written in the same
    database transaction as the balance change.
    """
    _check_amount(amount)
    _check_source(source)
    with _unit_of_work(db) as db:
        balance = _current_balance(db, user_id)
        if balance < amount:
            logger.warning(f"Debit refused for user {user_id}: needed {amount}, balance {balance}")
            raise InsufficientCreditsError(needed=amount, balance=balance)

        result = db.execute(
            update(User)
            .where(User.id == user_id, User.wallet_balance >= amount)
            .values(wallet_balance=User.wallet_balance - amount)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            # Lost a race with another debit between the read and the update
            balance = _current_balance(db, user_id)
            logger.warning(f"Debit refused for user {user_id}: needed {amount}, balance {balance}")
            raise InsufficientCreditsError(needed=amount, balance=balance)

        tx = _append(db, user_id, TX_DEBIT, source, amount, _current_balance(db, user_id), note,
                     story_id, session_id, chapter)
        logger.info(f"Debited {amount} credits from user {user_id} (source={source}, tx={tx.id}, balance={tx.balance_after})")
        return tx


def credit(user_id: str, amount: int, source: str = "topup", note: str = "", story_id: Optional[str] = None,
           session_id: Optional[str] = None, chapter: Optional[int] = None, refund_of: Optional[int] = None,
           db=None) -> WalletTransaction:
    """Add ``amount`` credits to the user's wallet"""
    _check_amount(amount)
    _check_source(source)
    with _unit_of_work(db) as db:
        _current_balance(db, user_id)
        db.execute(
            update(User)
            .where(User.id == user_id)
            .values(wallet_balance=User.wallet_balance + amount)
            .execution_options(synchronize_session="fetch")
        )
        try:
            tx = _append(db, user_id, TX_CREDIT, source, amount, _current_balance(db, user_id), note,
                         story_id, session_id, chapter, refund_of)
        except IntegrityError:
            # refund_of is unique: the debit has been reversed already
            raise AlreadyRefundedError(f"Transaction {refund_of} was already refunded")
        logger.info(f"Credited {amount} credits to user {user_id} (source={source}, tx={tx.id}, balance={tx.balance_after})")
        return tx


def refund(user_id: str, amount: int, source: str = "refund", refund_of: Optional[int] = None, note: str = "",
           story_id: Optional[str] = None, session_id: Optional[str] = None, chapter: Optional[int] = None,
           db=None) -> WalletTransaction:
    """A credit tagged as the reversal of an earlier debit"""
    if refund_of is not None and not note:
        note = f"refund for {refund_of}"
    return credit(user_id, amount, source=source, note=note, story_id=story_id, session_id=session_id,
                  chapter=chapter, refund_of=refund_of, db=db)


def refund_transaction(user_id: str, tx_id: int, db=None) -> WalletTransaction:
    """Reverse one specific debit of the user"""
    with _unit_of_work(db) as db:
        tx = db.get(WalletTransaction, tx_id)
        if tx is None:
            raise NotFoundError(f"Transaction {tx_id} not found")
        if tx.user_id != user_id:
            logger.warning(f"User {user_id} tried to refund transaction {tx_id} of another user")
            raise ForbiddenError(f"Transaction {tx_id} belongs to another user")
        if tx.type != TX_DEBIT:
            raise NotRefundableError(f"Transaction {tx_id} is not a debit")
        existing = db.execute(
            select(WalletTransaction.id).where(WalletTransaction.refund_of == tx_id)
        ).scalar_one_or_none()
        if existing is not None:
            raise AlreadyRefundedError(f"Transaction {tx_id} was already refunded by {existing}")
        return refund(user_id, tx.amount, refund_of=tx.id, story_id=tx.story_id, session_id=tx.session_id,
                      chapter=tx.chapter, db=db)


def get_balance(user_id: str, db=None) -> int:
    with _unit_of_work(db) as db:
        return _current_balance(db, user_id)


def list_transactions(user_id: str, limit: int = DEFAULT_PAGE_SIZE, before: Optional[int] = None,
                      db=None) -> Tuple[List[WalletTransaction], Optional[int]]:
    """
    Newest-first page of the user's ledger.

    ``before`` is the cursor returned by the previous page (a transaction
    id); the second element of the result is the cursor for the next page,
    or None on the last page.
    """
    if not isinstance(limit, int) or limit < 1 or limit > MAX_PAGE_SIZE:
        limit = DEFAULT_PAGE_SIZE
    with _unit_of_work(db) as db:
        stmt = select(WalletTransaction).where(WalletTransaction.user_id == user_id)
        if before is not None:
            stmt = stmt.where(WalletTransaction.id < before)
        rows = list(db.execute(stmt.order_by(WalletTransaction.id.desc()).limit(limit + 1)).scalars())
    has_more = len(rows) > limit
    items = rows[:limit]
    next_cursor = items[-1].id if has_more else None
    return items, next_cursor


def transaction_stats(start: Optional[datetime] = None, end: Optional[datetime] = None, db=None) -> Dict[str, Any]:
    """Aggregate ledger figures for the admin analytics view"""
    with _unit_of_work(db) as db:
        filters = []
        if start is not None:
            filters.append(WalletTransaction.created_at >= start)
        if end is not None:
            filters.append(WalletTransaction.created_at <= end)

        def _sum_of(tx_type):
            return func.coalesce(
                func.sum(case((WalletTransaction.type == tx_type, WalletTransaction.amount), else_=0)), 0
            )

        row = db.execute(
            select(
                func.count(WalletTransaction.id),
                _sum_of(TX_CREDIT),
                _sum_of(TX_DEBIT),
                func.avg(WalletTransaction.amount),
                func.count(func.distinct(WalletTransaction.user_id)),
            ).where(*filters)
        ).one()

    total, credits, debits, average, users = row
    return {
        "totalTransactions": total,
        "totalCredits": int(credits),
        "totalDebits": int(debits),
        "net": int(credits) - int(debits),
        "averageAmount": round(float(average), 2) if average is not None else 0.0,
        "uniqueUsers": users,
    }

# --- END OF FILE services/wallet_ledger.py ---
