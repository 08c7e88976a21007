"""
invoicer/invoicing/sequence.py
------------------------------
Concurrency-safe, per-business invoice number allocation.

Format:  INV + sequence zero-padded to 4 digits
Example: INV0001, INV0002, … INV9999, INV10000

Algorithm
─────────
1. Lock the business's InvoiceSequence row with SELECT … FOR UPDATE.
   Concurrent admissions for the same business block here until the
   holder commits; other businesses lock other rows and never wait.

2. If no row exists yet (first invoice of the business), INSERT one
   seeded with the highest suffix already on the business's invoices,
   then lock it. Two first invoices racing on the INSERT collide on the
   primary key; that surfaces as SequenceConflict and the admission is
   retried, by which time the row exists.

3. Increment last_seq in SQL (last_seq = last_seq + 1) and read it back.
   If that number is already on an invoice (rows imported or fixed by
   hand), fast-forward the counter past the highest stored suffix.

4. Return the formatted number.

The lock is released when the caller's transaction commits or rolls back.
Because the counter only advances inside the admission transaction, a
rolled-back admission gives its number back: the series has no gaps.
"""
import logging
import re

from sqlalchemy.exc import IntegrityError

from invoicer.invoicing.errors import SequenceConflict
from invoicer.invoicing.models import Invoice, InvoiceSequence


INVOICE_PREFIX  = 'INV'
INVOICE_PADDING = 4

logger = logging.getLogger(__name__)

_TRAILING_DIGITS = re.compile(r'(\d+)$')

# Postgres reports the constraint name; SQLite names the columns
_COLLISION_PATTERN = re.compile(
    r'uq_invoice_number_per_business'
    r'|invoice_sequences_pkey'
    r'|UNIQUE constraint failed: invoices\.business_id, invoices\.invoice_number'
    r'|UNIQUE constraint failed: invoice_sequences\.business_id',
    re.IGNORECASE,
)


def is_number_collision(exc) -> bool:
    """True if an IntegrityError came from the invoice-number or counter-row keys."""
    orig = getattr(exc, 'orig', None)
    diag = getattr(orig, 'diag', None)
    constraint = getattr(diag, 'constraint_name', None)
    if constraint:
        return constraint in ('uq_invoice_number_per_business', 'invoice_sequences_pkey')
    return bool(_COLLISION_PATTERN.search(str(orig or exc)))


def format_invoice_number(sequence: int) -> str:
    """INV + at least 4 digits; never truncates (INV10000)."""
    return f"{INVOICE_PREFIX}{max(int(sequence), 1):0{INVOICE_PADDING}d}"


def parse_invoice_sequence(invoice_number) -> int:
    """Numeric suffix of an invoice number, 0 if it has none."""
    if not invoice_number:
        return 0
    match = _TRAILING_DIGITS.search(invoice_number)
    return int(match.group(1)) if match else 0


def highest_existing_sequence(db_session, business_id) -> int:
    """Largest numeric suffix among the business's stored invoice numbers."""
    numbers = db_session.query(Invoice.invoice_number).filter(
        Invoice.business_id == business_id
    )
    return max((parse_invoice_sequence(n) for (n,) in numbers), default=0)


def _number_taken(db_session, business_id, invoice_number) -> bool:
    return db_session.query(
        db_session.query(Invoice.id).filter(
            Invoice.business_id == business_id,
            Invoice.invoice_number == invoice_number,
        ).exists()
    ).scalar()


def _lock_sequence_row(db_session, business_id):
    return (
        db_session.query(InvoiceSequence)
        .filter(InvoiceSequence.business_id == business_id)
        .with_for_update()
        .first()
    )


def next_invoice_number(db_session, business_id) -> str:
    """
    Allocate the next invoice number for `business_id`.

    MUST be called inside an open transaction; the row lock is held until
    the caller commits.

    Raises:
        SequenceConflict: the counter row was created concurrently.
    """
    seq_row = _lock_sequence_row(db_session, business_id)

    if seq_row is None:
        seq_row = InvoiceSequence(
            business_id=business_id,
            last_seq=highest_existing_sequence(db_session, business_id),
        )
        db_session.add(seq_row)
        try:
            db_session.flush()
        except IntegrityError as exc:
            if not is_number_collision(exc):
                raise
            raise SequenceConflict(
                f'Sequence row for business {business_id} created concurrently.'
            ) from exc
        seq_row = _lock_sequence_row(db_session, business_id)

    # SQL-side increment; the attribute is reloaded from the row on access
    seq_row.last_seq = InvoiceSequence.last_seq + 1
    db_session.flush()
    number = format_invoice_number(seq_row.last_seq)

    if _number_taken(db_session, business_id, number):
        # Counter is behind rows written outside the allocator (imports, manual fixes)
        seq_row.last_seq = highest_existing_sequence(db_session, business_id) + 1
        db_session.flush()
        logger.warning("Invoice sequence for business %s fast-forwarded past %s to %d",
                       business_id, number, seq_row.last_seq)
        number = format_invoice_number(seq_row.last_seq)

    return number


def peek_next_invoice_number(db_session, business_id) -> str:
    """
    Advisory preview of the number the next invoice will probably get.
    Takes no lock and writes nothing; the real number is assigned at admission.
    """
    last_seq = db_session.query(InvoiceSequence.last_seq).filter(
        InvoiceSequence.business_id == business_id
    ).scalar()
    if last_seq is None:
        last_seq = highest_existing_sequence(db_session, business_id)
    return format_invoice_number(last_seq + 1)
