from flask import request, session, jsonify, current_app, abort

from invoicer import db
from invoicer.auth.decorators import login_required, admin_required
from invoicer.businesses import businesses
from invoicer.businesses.access import load_owned_business
from invoicer.businesses.limits import check_business_quota, lock_owner
from invoicer.businesses.models import Business, normalize_plan


@businesses.route('/', methods=['POST'])
@login_required
def create():
    """Create a business for the session user, within their plan's business limit."""
    data = request.get_json(silent=True) or {}
    name = str(data.get('name') or '').strip()
    if not name:
        return jsonify({'error': 'VALIDATION_ERROR', 'fields': {'name': 'Name is required.'}}), 400
    if len(name) > 200:
        return jsonify({'error': 'VALIDATION_ERROR',
                        'fields': {'name': 'Name must be 200 characters or fewer.'}}), 400

    owner_id = session['user_id']
    if not lock_owner(db.session, owner_id):
        abort(401)
    quota = check_business_quota(db.session, owner_id)
    if not quota.can_create:
        return jsonify({'error': 'NEEDS_PAYMENT', 'reason': 'BusinessLimitReached',
                        'plan': quota.plan.value, 'limit': quota.limit,
                        'message': quota.message}), 402

    business = Business(name=name, owner_id=owner_id, plan=quota.plan, extra_invoice_credits=0)
    db.session.add(business)
    db.session.commit()

    current_app.logger.info(f"Business {business.id} created by User ID {owner_id}")
    return jsonify(business.to_dict()), 201


@businesses.route('/')
@login_required
def index():
    """Businesses owned by the session user."""
    rows = Business.query.filter_by(owner_id=session['user_id']).order_by(Business.id).all()
    return jsonify([b.to_dict() for b in rows])


@businesses.route('/<int:business_id>', methods=['DELETE'])
@login_required
def delete(business_id):
    """Delete a business together with its invoices and sequence counter."""
    business = load_owned_business(business_id)
    db.session.delete(business)
    db.session.commit()
    current_app.logger.warning(f"Business {business_id} deleted by User ID {session['user_id']}")
    return jsonify({'message': 'Business deleted.'})


@businesses.route('/<int:business_id>/plan', methods=['PUT'])
@admin_required
def update_plan(business_id):
    """Direct admin plan change (payment webhooks use /payments/webhook)."""
    data = request.get_json(silent=True) or {}
    if not data.get('plan'):
        abort(400, description='plan is required.')

    business = db.session.get(Business, business_id)
    if business is None:
        abort(404)

    old_plan = business.plan
    business.plan = normalize_plan(data['plan'])
    db.session.commit()

    current_app.logger.info(
        f"Business {business_id} plan changed {old_plan.value} → {business.plan.value} by admin"
    )
    return jsonify(business.to_dict())
