"""
invoicer/payments/events.py
---------------------------
Apply confirmed payment events to businesses.

The payment processor has already taken the money and verified the event
by the time it gets here; these handlers only record the outcome.

    credits.purchased     {business_id, quantity}  → add invoice credits
    subscription.updated  {business_id, plan}      → switch plan
    subscription.deleted  {business_id}            → back to free_user

Handlers never commit; the webhook route commits once per event.
"""
import logging

from invoicer.businesses.models import Business, PlanEnum, normalize_plan
from invoicer.invoicing.credits import add_credits
from invoicer.invoicing.errors import InvalidPayload, InvalidQuantity, NotFound

logger = logging.getLogger(__name__)


def _business_id(data):
    try:
        return int(data.get('business_id'))
    except (TypeError, ValueError):
        raise InvalidPayload({'business_id': 'A numeric business_id is required.'})


def _quantity(data):
    raw = data.get('quantity', 1)
    try:
        return int(str(raw))
    except ValueError:
        raise InvalidQuantity(f'Credit quantity must be a positive integer, got {raw!r}.')


def _set_plan(db_session, business_id, plan):
    business = db_session.get(Business, business_id)
    if business is None:
        raise NotFound(f'Business {business_id} not found.')
    old_plan = business.plan
    business.plan = plan
    logger.info("Business %s plan %s → %s", business_id, old_plan.value, plan.value)
    return {'business_id': business_id, 'plan': plan.value}


def handle_credits_purchased(db_session, data):
    business_id = _business_id(data)
    balance = add_credits(db_session, business_id, _quantity(data))
    return {'business_id': business_id, 'credits': balance}


def handle_subscription_updated(db_session, data):
    if not data.get('plan'):
        raise InvalidPayload({'plan': 'plan is required.'})
    return _set_plan(db_session, _business_id(data), normalize_plan(data.get('plan')))


def handle_subscription_deleted(db_session, data):
    return _set_plan(db_session, _business_id(data), PlanEnum.free_user)


HANDLERS = {
    'credits.purchased':    handle_credits_purchased,
    'subscription.updated': handle_subscription_updated,
    'subscription.deleted': handle_subscription_deleted,
}


def apply_event(db_session, event: dict):
    """
    Dispatch one event. Returns the handler's result, or None for event
    types this service does not act on.
    """
    handler = HANDLERS.get(event.get('type'))
    if handler is None:
        logger.info("Ignoring payment event of type %r", event.get('type'))
        return None
    data = event.get('data')
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidPayload({'data': 'Event data must be a JSON object.'})
    return handler(db_session, data)
