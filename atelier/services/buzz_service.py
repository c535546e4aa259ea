"""
atelier.services.buzz_service — Buzz Ledger Helpers
====================================================

Buzz moves only through rows in ``buzz_transactions``; an account's
balance is what it received minus what it sent.  Every row carries a
unique external id, which makes charges and refunds safe to retry:

* :func:`charge` — move Buzz from a user to the central bank.
* :func:`refund` — reverse a charge once; a second call is a no-op.

The helpers work inside the caller's session and never commit, so a
charge and the row it pays for land in the same database transaction.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from atelier.constants import CENTRAL_BANK_ACCOUNT_ID
from atelier.database.models import BuzzTransaction
from atelier.errors import InsufficientFundsError, NotFoundError

logger = logging.getLogger(__name__)

SPENDABLE_ACCOUNT_TYPES = ("yellow", "green")


def refund_transaction_id(external_id: str) -> str:
    return f"{external_id}-refund"


def get_balance(session: Session, account_id: int) -> int:
    """Spendable (yellow + green) balance of *account_id*."""
    received = session.scalar(
        select(func.coalesce(func.sum(BuzzTransaction.amount), 0)).where(
            BuzzTransaction.to_account_id == account_id,
            BuzzTransaction.account_type.in_(SPENDABLE_ACCOUNT_TYPES),
        )
    )
    sent = session.scalar(
        select(func.coalesce(func.sum(BuzzTransaction.amount), 0)).where(
            BuzzTransaction.from_account_id == account_id,
            BuzzTransaction.account_type.in_(SPENDABLE_ACCOUNT_TYPES),
        )
    )
    return int(received or 0) - int(sent or 0)


def charge(
    session: Session,
    *,
    account_id: int,
    amount: int,
    external_id: str,
    description: str,
    details: dict[str, Any] | None = None,
    purpose: str = "this",
) -> BuzzTransaction:
    """Pay *amount* from *account_id* into the central bank.

    Raises :class:`InsufficientFundsError` when the balance is too low.
    """
    balance = get_balance(session, account_id)
    if balance < amount:
        raise InsufficientFundsError(
            f"You need {amount:,} Buzz to {purpose}. You currently have "
            f"{balance:,} Buzz ({amount - balance:,} Buzz short)."
        )
    transaction = BuzzTransaction(
        from_account_id=account_id,
        to_account_id=CENTRAL_BANK_ACCOUNT_ID,
        account_type="yellow",
        amount=amount,
        type="Fee",
        description=description,
        details=details or {},
        external_transaction_id=external_id,
    )
    session.add(transaction)
    session.flush()
    return transaction


def refund(
    session: Session,
    external_id: str,
    *,
    description: str,
    details: dict[str, Any] | None = None,
) -> int:
    """Pay the charge *external_id* back; returns the amount refunded.

    Returns 0 when the charge was already refunded.
    """
    original = session.scalar(
        select(BuzzTransaction).where(BuzzTransaction.external_transaction_id == external_id)
    )
    if original is None:
        raise NotFoundError(f"Transaction {external_id} not found")

    refund_id = refund_transaction_id(external_id)
    already = session.scalar(
        select(BuzzTransaction.id).where(BuzzTransaction.external_transaction_id == refund_id)
    )
    if already is not None:
        logger.info("Transaction %s was already refunded", external_id)
        return 0

    session.add(BuzzTransaction(
        from_account_id=original.to_account_id,
        to_account_id=original.from_account_id,
        account_type=original.account_type,
        amount=original.amount,
        type="Refund",
        description=description,
        details=details or {},
        external_transaction_id=refund_id,
    ))
    session.flush()
    return original.amount
