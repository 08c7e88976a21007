
import pytest
from invoicer import create_app, db
from invoicer.auth.models import User, RoleEnum
from invoicer.businesses.models import Business, PlanEnum

@pytest.fixture
def app():
    app = create_app(config_name='testing')
    with app.app_context():
        db.create_all()
        owner = User(username='owner', name='Owner', role=RoleEnum.owner)
        owner.set_password('owner123')
        db.session.add(owner)
        db.session.flush()
        db.session.add(Business(id=1, name='Paying Co', owner_id=owner.id,
                                plan=PlanEnum.free_user, extra_invoice_credits=1))
        db.session.commit()

    yield app

    with app.app_context():
        db.drop_all()


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


def _business(app):
    with app.app_context():
        b = db.session.get(Business, 1)
        return b.plan, b.extra_invoice_credits


def test_credits_purchased(app, client):
    resp = client.post('/payments/webhook', json={
        'type': 'credits.purchased', 'data': {'business_id': 1, 'quantity': 5}
    })
    assert resp.status_code == 200
    assert resp.get_json() == {'received': True, 'handled': True, 'business_id': 1, 'credits': 6}
    assert _business(app) == (PlanEnum.free_user, 6)


@pytest.mark.parametrize('quantity', [0, -3, 'lots'])
def test_credits_purchased_bad_quantity(app, client, quantity):
    resp = client.post('/payments/webhook', json={
        'type': 'credits.purchased', 'data': {'business_id': 1, 'quantity': quantity}
    })
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'INVALID_QUANTITY'
    assert _business(app) == (PlanEnum.free_user, 1)


def test_credits_for_unknown_business(client):
    resp = client.post('/payments/webhook', json={
        'type': 'credits.purchased', 'data': {'business_id': 42, 'quantity': 1}
    })
    assert resp.status_code == 404


def test_missing_business_id(client):
    resp = client.post('/payments/webhook', json={'type': 'credits.purchased', 'data': {}})
    assert resp.status_code == 400
    assert 'business_id' in resp.get_json()['fields']


def test_subscription_updated_accepts_short_names(app, client):
    resp = client.post('/payments/webhook', json={
        'type': 'subscription.updated', 'data': {'business_id': 1, 'plan': 'pro'}
    })
    assert resp.status_code == 200
    assert resp.get_json()['plan'] == 'professional'
    assert _business(app)[0] is PlanEnum.professional


def test_subscription_updated_requires_plan(client):
    resp = client.post('/payments/webhook', json={
        'type': 'subscription.updated', 'data': {'business_id': 1}
    })
    assert resp.status_code == 400


def test_subscription_deleted_keeps_credits(app, client):
    client.post('/payments/webhook', json={
        'type': 'subscription.updated', 'data': {'business_id': 1, 'plan': 'enterprise'}
    })
    resp = client.post('/payments/webhook', json={
        'type': 'subscription.deleted', 'data': {'business_id': 1}
    })
    assert resp.status_code == 200
    assert _business(app) == (PlanEnum.free_user, 1)


def test_unknown_event_type_acknowledged(client):
    resp = client.post('/payments/webhook', json={'type': 'invoice.paid', 'data': {}})
    assert resp.status_code == 200
    assert resp.get_json() == {'received': True, 'handled': False}


def test_event_without_type(client):
    assert client.post('/payments/webhook', json={'data': {}}).status_code == 400
    assert client.post('/payments/webhook', data='not json').status_code == 400


def test_shared_secret_checked_when_configured():
    app = create_app('testing', overrides={'PAYMENT_WEBHOOK_SECRET': 's3cret'})
    with app.app_context():
        db.create_all()
        owner = User(username='owner', name='Owner', role=RoleEnum.owner)
        owner.set_password('owner123')
        db.session.add(owner)
        db.session.flush()
        db.session.add(Business(id=1, name='Paying Co', owner_id=owner.id))
        db.session.commit()

    event = {'type': 'credits.purchased', 'data': {'business_id': 1, 'quantity': 2}}
    with app.test_client() as client:
        assert client.post('/payments/webhook', json=event).status_code == 401
        assert client.post('/payments/webhook', json=event,
                           headers={'X-Webhook-Secret': 'wrong'}).status_code == 401
        assert client.post('/payments/webhook', json=event,
                           headers={'X-Webhook-Secret': 's3cret'}).status_code == 200

    with app.app_context():
        assert db.session.get(Business, 1).extra_invoice_credits == 2
        db.session.remove()
        db.drop_all()


def test_non_object_data_rejected(app, client):
    resp = client.post('/payments/webhook', json={
        'type': 'credits.purchased', 'data': [{'business_id': 1, 'quantity': 5}]
    })
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'VALIDATION_ERROR'
    assert 'data' in resp.get_json()['fields']
    assert _business(app) == (PlanEnum.free_user, 1)
