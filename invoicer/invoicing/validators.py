"""
invoicer/invoicing/validators.py
--------------------------------
Pure-Python validation for invoice creation payloads.
Returns a dict of field -> error_message.
An empty dict means all fields are valid.
"""
from datetime import date
from decimal import Decimal, InvalidOperation

# Invoice.total_amount is Numeric(12, 2)
MAX_INVOICE_AMOUNT = Decimal('9999999999.99')
CENTS = Decimal('0.01')


def validate_invoice_payload(data: dict) -> dict:
    """
    Validate the raw JSON body of a create-invoice request.

    Returns:
        dict of {field_name: error_message} — empty if all valid.
    """
    errors = {}

    # ── client_name ───────────────────────────────────────────────
    client_name = str(data.get('client_name') or '').strip()
    if not client_name:
        errors['client_name'] = 'Client name is required.'
    elif len(client_name) > 200:
        errors['client_name'] = 'Client name must be 200 characters or fewer.'

    # ── total_amount ──────────────────────────────────────────────
    amount_raw = data.get('total_amount', '0')
    try:
        amount = Decimal(str(amount_raw).strip() or '0')
        if not amount.is_finite():
            errors['total_amount'] = 'Total amount must be a valid number.'
        elif amount < 0:
            errors['total_amount'] = 'Total amount cannot be negative.'
        elif amount > MAX_INVOICE_AMOUNT:
            errors['total_amount'] = f'Total amount cannot exceed {MAX_INVOICE_AMOUNT}.'
    except InvalidOperation:
        errors['total_amount'] = 'Total amount must be a valid number.'

    # ── due_date ──────────────────────────────────────────────────
    due_raw = data.get('due_date')
    if due_raw:
        try:
            date.fromisoformat(str(due_raw))
        except ValueError:
            errors['due_date'] = 'Due date must be YYYY-MM-DD.'

    # ── invoice_number ────────────────────────────────────────────
    if data.get('invoice_number'):
        errors['invoice_number'] = 'Invoice numbers are assigned automatically.'

    return errors


def parse_invoice_payload(data: dict) -> dict:
    """
    Convert validated raw values to column types.
    Call only after validate_invoice_payload returns no errors.
    """
    due_raw = data.get('due_date')
    notes   = str(data.get('notes') or '').strip()
    return {
        'client_name':  str(data.get('client_name') or '').strip(),
        'total_amount': Decimal(str(data.get('total_amount', '0')).strip() or '0').quantize(CENTS),
        'due_date':     date.fromisoformat(str(due_raw)) if due_raw else None,
        'notes':        notes or None,
    }
