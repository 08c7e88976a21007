"""
invoicer/invoicing/credits.py
-----------------------------
Purchased overage credits (Business.extra_invoice_credits).

Every mutation is a single conditional UPDATE judged by its affected-row
count, never a read followed by a write:

    Tx A: SELECT credits → 1  ┐
    Tx B: SELECT credits → 1  ┘  both "see" a credit
    Tx A: UPDATE credits = 0
    Tx B: UPDATE credits = 0   ← two invoices paid for with one credit

    UPDATE businesses SET extra_invoice_credits = extra_invoice_credits - 1
     WHERE id = :id AND extra_invoice_credits > 0

returns rowcount 1 to exactly one of them. The CHECK (credits >= 0)
constraint on the table backs this up.

These helpers never commit; the caller owns the transaction.
"""
import logging

from sqlalchemy import update

from invoicer.businesses.models import Business
from invoicer.invoicing.errors import InvalidQuantity, NotFound

logger = logging.getLogger(__name__)


def get_balance(db_session, business_id) -> int:
    """Current credit balance; raises NotFound for an unknown business."""
    balance = db_session.query(Business.extra_invoice_credits).filter(
        Business.id == business_id
    ).scalar()
    if balance is None:
        raise NotFound(f'Business {business_id} not found.')
    return balance


def try_consume_one(db_session, business_id) -> bool:
    """
    Atomically take one credit. Returns False (and changes nothing) when the
    balance is already 0 or the business does not exist.
    """
    result = db_session.execute(
        update(Business)
        .where(Business.id == business_id, Business.extra_invoice_credits > 0)
        .values(extra_invoice_credits=Business.extra_invoice_credits - 1)
        .execution_options(synchronize_session='evaluate')
    )
    consumed = result.rowcount == 1
    if consumed:
        logger.info("Consumed 1 invoice credit for business %s", business_id)
    return consumed


def add_credits(db_session, business_id, quantity) -> int:
    """
    Top up the balance after a confirmed purchase and return the new balance.

    Payment verification is the caller's job; this trusts the confirmation.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity(f'Credit quantity must be a positive integer, got {quantity!r}.')

    result = db_session.execute(
        update(Business)
        .where(Business.id == business_id)
        .values(extra_invoice_credits=Business.extra_invoice_credits + quantity)
        .execution_options(synchronize_session='evaluate')
    )
    if result.rowcount == 0:
        raise NotFound(f'Business {business_id} not found.')

    balance = get_balance(db_session, business_id)
    logger.info("Added %d credit(s) to business %s (balance %d)", quantity, business_id, balance)
    return balance
