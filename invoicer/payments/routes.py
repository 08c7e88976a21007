import hmac

from flask import request, jsonify, current_app, abort
from sqlalchemy.exc import SQLAlchemyError

from invoicer import db
from invoicer.invoicing.errors import InvoicingError, Transient
from invoicer.payments import payments
from invoicer.payments.events import apply_event
from invoicer.utils.retry import is_transient


def _check_shared_secret():
    expected = current_app.config.get('PAYMENT_WEBHOOK_SECRET')
    if not expected:
        return
    supplied = request.headers.get('X-Webhook-Secret', '')
    if not hmac.compare_digest(supplied.encode(), expected.encode()):
        current_app.logger.warning("Payment webhook rejected: bad shared secret")
        abort(401)


@payments.route('/webhook', methods=['POST'])
def webhook():
    """Record a confirmed payment event (credit purchase or plan change)."""
    _check_shared_secret()

    event = request.get_json(silent=True)
    if not isinstance(event, dict) or not event.get('type'):
        abort(400, description='Event JSON with a "type" field is required.')

    try:
        result = apply_event(db.session, event)
        db.session.commit()
    except InvoicingError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"Payment event {event.get('type')} failed: {exc}")
        if is_transient(exc):
            raise Transient() from exc
        raise

    if result is None:
        return jsonify({'received': True, 'handled': False})
    current_app.logger.info(f"Payment event {event['type']} applied: {result}")
    return jsonify({'received': True, 'handled': True, **result})
