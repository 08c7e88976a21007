
import pytest
from invoicer import create_app, db
from invoicer.auth.models import User, RoleEnum
from invoicer.businesses.models import Business, PlanEnum
from invoicer.invoicing.models import Invoice, InvoiceSequence
from invoicer.invoicing.sequence import (
    format_invoice_number, parse_invoice_sequence,
    next_invoice_number, peek_next_invoice_number,
)

# ── Fixtures ──────────────────────────────────────────────────────

@pytest.fixture
def business():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        owner = User(name='Owner', username='owner', role=RoleEnum.owner)
        owner.set_password('secret')
        db.session.add(owner)
        db.session.flush()
        b = Business(name='Acme', owner_id=owner.id, plan=PlanEnum.enterprise)
        db.session.add(b)
        db.session.commit()
        yield b
        db.session.remove()
        db.drop_all()


# ── Formatting ────────────────────────────────────────────────────

@pytest.mark.parametrize('seq, expected', [
    (1, 'INV0001'),
    (42, 'INV0042'),
    (9999, 'INV9999'),
    (10000, 'INV10000'),
    (123456, 'INV123456'),
])
def test_format_invoice_number(seq, expected):
    assert format_invoice_number(seq) == expected


@pytest.mark.parametrize('number, expected', [
    ('INV0007', 7),
    ('INV10000', 10000),
    ('2026-0042', 42),
    ('DRAFT', 0),
    (None, 0),
])
def test_parse_invoice_sequence(number, expected):
    assert parse_invoice_sequence(number) == expected


# ── Allocation ────────────────────────────────────────────────────

def test_sequential_numbers_increase_by_one(business):
    numbers = []
    for _ in range(3):
        numbers.append(next_invoice_number(db.session, business.id))
        db.session.commit()
    assert numbers == ['INV0001', 'INV0002', 'INV0003']


def test_padding_grows_past_four_digits(business):
    db.session.add(InvoiceSequence(business_id=business.id, last_seq=9998))
    db.session.commit()

    assert next_invoice_number(db.session, business.id) == 'INV9999'
    assert next_invoice_number(db.session, business.id) == 'INV10000'
    db.session.commit()


def test_rollback_gives_number_back(business):
    assert next_invoice_number(db.session, business.id) == 'INV0001'
    db.session.commit()

    assert next_invoice_number(db.session, business.id) == 'INV0002'
    db.session.rollback()

    assert next_invoice_number(db.session, business.id) == 'INV0002'


def test_first_allocation_continues_existing_invoices(business):
    # Invoices issued before the counter row existed
    for n in ('INV0001', 'INV0002', 'INV0007'):
        db.session.add(Invoice(business_id=business.id, invoice_number=n, client_name='Old'))
    db.session.commit()

    assert next_invoice_number(db.session, business.id) == 'INV0008'


def test_counter_behind_stored_numbers_fast_forwards(business):
    db.session.add(InvoiceSequence(business_id=business.id, last_seq=0))
    db.session.add(Invoice(business_id=business.id, invoice_number='INV0001', client_name='Imported'))
    db.session.add(Invoice(business_id=business.id, invoice_number='INV0002', client_name='Imported'))
    db.session.commit()

    assert next_invoice_number(db.session, business.id) == 'INV0003'
    assert db.session.get(InvoiceSequence, business.id).last_seq == 3


def test_peek_does_not_reserve(business):
    assert peek_next_invoice_number(db.session, business.id) == 'INV0001'
    assert peek_next_invoice_number(db.session, business.id) == 'INV0001'
    assert db.session.get(InvoiceSequence, business.id) is None

    next_invoice_number(db.session, business.id)
    db.session.commit()
    assert peek_next_invoice_number(db.session, business.id) == 'INV0002'
