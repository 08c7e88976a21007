
import pytest
from datetime import datetime
from sqlalchemy.exc import IntegrityError, OperationalError
from invoicer import create_app, db
from invoicer.auth.models import User, RoleEnum
from invoicer.businesses.models import Business, PlanEnum
from invoicer.invoicing import sequence, usage
from invoicer.invoicing.admission import (
    request_creation, get_usage_snapshot, get_next_invoice_number, get_owner_month_count,
)
from invoicer.invoicing.errors import (
    InvalidPayload, NotFound, SequenceConflict, Transient,
)
from invoicer.invoicing.models import Invoice
from invoicer.invoicing.policy import Denial, DenialReason

PAYLOAD = {'client_name': 'Globex', 'total_amount': '250.00'}

# ── Fixtures ──────────────────────────────────────────────────────

@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def owner(app):
    user = User(name='Owner', username='owner', role=RoleEnum.owner)
    user.set_password('secret')
    db.session.add(user)
    db.session.commit()
    return user


def _business(owner, plan, credits=0, name='Acme'):
    b = Business(name=name, owner_id=owner.id, plan=plan, extra_invoice_credits=credits)
    db.session.add(b)
    db.session.commit()
    return b.id


def _invoice_count(business_id):
    return Invoice.query.filter_by(business_id=business_id).count()


def _credits(business_id):
    return db.session.get(Business, business_id).extra_invoice_credits


# ── Free tier ─────────────────────────────────────────────────────

def test_free_first_invoice_then_denied(owner):
    business_id = _business(owner, PlanEnum.free_user)

    first = request_creation(business_id, PAYLOAD, author_id=owner.id)
    assert isinstance(first, Invoice)
    assert first.invoice_number == 'INV0001'
    assert str(first.total_amount) == '250.00'

    second = request_creation(business_id, PAYLOAD, author_id=owner.id)
    assert isinstance(second, Denial)
    assert second.reason is DenialReason.FREE_LIMIT_REACHED
    assert _invoice_count(business_id) == 1


def test_free_credit_consumed_once(owner):
    business_id = _business(owner, PlanEnum.free_user, credits=1)

    assert isinstance(request_creation(business_id, PAYLOAD), Invoice)
    assert _credits(business_id) == 1   # tier headroom used first

    via_credit = request_creation(business_id, PAYLOAD)
    assert via_credit.invoice_number == 'INV0002'
    assert _credits(business_id) == 0

    denied = request_creation(business_id, PAYLOAD)
    assert isinstance(denied, Denial)
    assert _invoice_count(business_id) == 2


def test_denial_writes_nothing(owner):
    business_id = _business(owner, PlanEnum.free_user)
    request_creation(business_id, PAYLOAD)
    seq_before = get_next_invoice_number(business_id)

    request_creation(business_id, PAYLOAD)

    assert _invoice_count(business_id) == 1
    assert _credits(business_id) == 0
    assert get_next_invoice_number(business_id) == seq_before == 'INV0002'


# ── Professional tier ─────────────────────────────────────────────

def test_professional_monthly_limit_and_reset(app, owner):
    limit = app.config['PROFESSIONAL_MONTHLY_INVOICE_LIMIT']
    business_id = _business(owner, PlanEnum.professional)
    march = datetime(2026, 3, 10, 12, 0)

    for _ in range(limit):
        assert isinstance(request_creation(business_id, PAYLOAD, now=march), Invoice)

    denied = request_creation(business_id, PAYLOAD, now=march)
    assert isinstance(denied, Denial)
    assert denied.reason is DenialReason.MONTHLY_LIMIT_REACHED
    assert denied.limit == limit

    april = request_creation(business_id, PAYLOAD, now=datetime(2026, 4, 1, 0, 0))
    assert isinstance(april, Invoice)
    assert april.invoice_number == f'INV{limit + 1:04d}'


def test_professional_over_limit_uses_credit():
    app = create_app('testing', overrides={'PROFESSIONAL_MONTHLY_INVOICE_LIMIT': 2})
    with app.app_context():
        db.create_all()
        user = User(name='Pro', username='pro', role=RoleEnum.owner)
        user.set_password('secret')
        db.session.add(user)
        db.session.commit()
        business_id = _business(user, PlanEnum.professional, credits=1)

        results = [request_creation(business_id, PAYLOAD) for _ in range(4)]

        assert [isinstance(r, Invoice) for r in results] == [True, True, True, False]
        assert _credits(business_id) == 0
        db.session.remove()
        db.drop_all()


# ── Enterprise ────────────────────────────────────────────────────

def test_enterprise_never_denied(owner, monkeypatch):
    business_id = _business(owner, PlanEnum.enterprise)
    monkeypatch.setattr(usage, 'count_all_time', lambda session, bid: 100000)
    monkeypatch.setattr(usage, 'count_current_month', lambda session, bid, **kw: 100000)

    result = request_creation(business_id, PAYLOAD)
    assert isinstance(result, Invoice)
    assert _credits(business_id) == 0


# ── Faults ────────────────────────────────────────────────────────

def test_invalid_payload_rejected_before_admission(owner):
    business_id = _business(owner, PlanEnum.enterprise)
    with pytest.raises(InvalidPayload) as exc:
        request_creation(business_id, {'client_name': '', 'total_amount': '-5',
                                       'invoice_number': 'INV0042'})
    assert set(exc.value.errors) == {'client_name', 'total_amount', 'invoice_number'}
    assert _invoice_count(business_id) == 0


def test_unknown_business(app):
    with pytest.raises(NotFound):
        request_creation(9999, PAYLOAD)


def test_connection_failure_is_retried_then_transient(owner, monkeypatch):
    business_id = _business(owner, PlanEnum.free_user, credits=2)
    calls = []

    def refuse(session, bid):
        calls.append(bid)
        raise OperationalError('SELECT count(*) FROM invoices', {},
                               Exception('could not connect to server: Connection refused'))

    monkeypatch.setattr(usage, 'count_all_time', refuse)

    with pytest.raises(Transient):
        request_creation(business_id, PAYLOAD)

    assert len(calls) == 3
    monkeypatch.undo()
    assert _invoice_count(business_id) == 0
    assert _credits(business_id) == 2


def test_connection_failure_recovers(owner, monkeypatch):
    business_id = _business(owner, PlanEnum.enterprise)
    real_count = usage.count_all_time
    calls = []

    def flaky(session, bid):
        calls.append(bid)
        if len(calls) == 1:
            raise OperationalError('SELECT 1', {}, Exception('server closed the connection unexpectedly'))
        return real_count(session, bid)

    monkeypatch.setattr(usage, 'count_all_time', flaky)

    result = request_creation(business_id, PAYLOAD)
    assert result.invoice_number == 'INV0001'
    assert len(calls) == 2


def test_logical_database_error_propagates(owner, monkeypatch):
    business_id = _business(owner, PlanEnum.enterprise)
    calls = []

    def broken(session, bid):
        calls.append(bid)
        raise OperationalError('SELECT 1', {}, Exception('no such column: invoices.business_id'))

    monkeypatch.setattr(usage, 'count_all_time', broken)

    with pytest.raises(OperationalError):
        request_creation(business_id, PAYLOAD)
    assert len(calls) == 1


# ── Number conflicts ──────────────────────────────────────────────

def test_sequence_conflict_retried(owner, monkeypatch):
    business_id = _business(owner, PlanEnum.free_user, credits=1)
    request_creation(business_id, PAYLOAD)
    real_next = sequence.next_invoice_number
    failures = []

    def collide_twice(session, bid):
        if len(failures) < 2:
            failures.append(bid)
            raise SequenceConflict()
        return real_next(session, bid)

    monkeypatch.setattr(sequence, 'next_invoice_number', collide_twice)

    result = request_creation(business_id, PAYLOAD)
    assert result.invoice_number == 'INV0002'
    assert len(failures) == 2
    assert _credits(business_id) == 0


def test_sequence_conflict_exhausted_keeps_credit(owner, monkeypatch):
    business_id = _business(owner, PlanEnum.free_user, credits=1)
    request_creation(business_id, PAYLOAD)
    calls = []

    def always_collide(session, bid):
        calls.append(bid)
        raise SequenceConflict()

    monkeypatch.setattr(sequence, 'next_invoice_number', always_collide)

    with pytest.raises(Transient):
        request_creation(business_id, PAYLOAD)

    assert len(calls) == 3
    assert _credits(business_id) == 1
    assert _invoice_count(business_id) == 1


# ── Read-only projections ─────────────────────────────────────────

def test_usage_snapshot(owner):
    business_id = _business(owner, PlanEnum.free_user, credits=3)
    request_creation(business_id, PAYLOAD)

    snap = get_usage_snapshot(business_id).to_dict()
    assert snap['plan'] == 'free_user'
    assert snap['all_time_count'] == 1
    assert snap['used'] == 1
    assert snap['limit'] == 1
    assert snap['remaining'] == 0
    assert snap['credit_balance'] == 3


def test_usage_snapshot_enterprise_unlimited(owner):
    business_id = _business(owner, PlanEnum.enterprise)
    snap = get_usage_snapshot(business_id)
    assert snap.limit is None
    assert snap.remaining is None


def test_usage_snapshot_unknown_business(app):
    with pytest.raises(NotFound):
        get_usage_snapshot(9999)


def test_owner_month_count_spans_businesses(owner):
    a = _business(owner, PlanEnum.enterprise, name='A')
    b = _business(owner, PlanEnum.enterprise, name='B')
    now = datetime(2026, 5, 5, 9, 0)
    request_creation(a, PAYLOAD, now=now)
    request_creation(a, PAYLOAD, now=now)
    request_creation(b, PAYLOAD, now=now)

    assert get_owner_month_count(owner.id, now=now) == 3
    assert get_owner_month_count(owner.id, now=datetime(2026, 6, 1)) == 0


def test_numbers_independent_per_business(owner):
    a = _business(owner, PlanEnum.enterprise, name='A')
    b = _business(owner, PlanEnum.enterprise, name='B')

    assert request_creation(a, PAYLOAD).invoice_number == 'INV0001'
    assert request_creation(a, PAYLOAD).invoice_number == 'INV0002'
    assert request_creation(b, PAYLOAD).invoice_number == 'INV0001'


# ── Column bounds & foreign keys ──────────────────────────────────

@pytest.mark.parametrize('amount, ok', [
    ('9999999999.99', True),
    ('10000000000.00', False),
    ('1E+30', False),
])
def test_amount_bounded_by_column_precision(owner, amount, ok):
    business_id = _business(owner, PlanEnum.enterprise)
    if ok:
        assert isinstance(request_creation(business_id, {**PAYLOAD, 'total_amount': amount}), Invoice)
    else:
        with pytest.raises(InvalidPayload) as exc:
            request_creation(business_id, {**PAYLOAD, 'total_amount': amount})
        assert 'total_amount' in exc.value.errors
        assert _invoice_count(business_id) == 0


def test_foreign_key_violation_is_not_a_number_conflict(owner, monkeypatch):
    business_id = _business(owner, PlanEnum.free_user, credits=1)
    request_creation(business_id, PAYLOAD)
    real_next = sequence.next_invoice_number
    calls = []

    def counting(session, bid):
        calls.append(bid)
        return real_next(session, bid)

    monkeypatch.setattr(sequence, 'next_invoice_number', counting)

    # author 9999 does not exist
    with pytest.raises(IntegrityError):
        request_creation(business_id, PAYLOAD, author_id=9999)

    assert len(calls) == 1
    assert _credits(business_id) == 1
    assert _invoice_count(business_id) == 1


@pytest.mark.parametrize('message, collision', [
    ('UNIQUE constraint failed: invoices.business_id, invoices.invoice_number', True),
    ('UNIQUE constraint failed: invoice_sequences.business_id', True),
    ('duplicate key value violates unique constraint "uq_invoice_number_per_business"', True),
    ('FOREIGN KEY constraint failed', False),
    ('UNIQUE constraint failed: invoices.public_token', False),
])
def test_number_collision_classification(message, collision):
    exc = IntegrityError('INSERT INTO invoices ...', {}, Exception(message))
    assert sequence.is_number_collision(exc) is collision
