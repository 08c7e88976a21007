from flask import request, session, jsonify, current_app, abort
from sqlalchemy import desc

from invoicer import db
from invoicer.auth.decorators import login_required
from invoicer.businesses.access import load_owned_business, parse_business_id
from invoicer.invoicing import invoicing
from invoicer.invoicing.admission import (
    get_next_invoice_number, get_owner_month_count,
    get_usage_snapshot, request_creation,
)
from invoicer.invoicing.models import Invoice, InvoiceStatus
from invoicer.invoicing.policy import Denial


# ── CREATE INVOICE ────────────────────────────────────────────────

@invoicing.route('/', methods=['POST'])
@login_required
def create():
    """
    Admit and persist one invoice.

      201 → invoice JSON (with its assigned invoice_number)
      402 → {"error": "NEEDS_PAYMENT", "reason": ...}, route to buy-credits or upgrade
      400 / 404 → bad payload / unknown business
      503 → {"error": "TRANSIENT"}, safe to retry
    """
    data = request.get_json(silent=True) or {}
    business_id = parse_business_id(data.get('business_id'))
    load_owned_business(business_id)

    result = request_creation(business_id, data, author_id=session['user_id'])

    if isinstance(result, Denial):
        current_app.logger.info(
            f"Invoice creation denied for business {business_id}: {result.reason.value}"
        )
        return jsonify(result.to_dict()), 402

    current_app.logger.info(
        f"Invoice {result.invoice_number} created by User ID {session['user_id']} "
        f"for business {business_id}"
    )
    return jsonify(result.to_dict()), 201


# ── USAGE ─────────────────────────────────────────────────────────

@invoicing.route('/usage')
@login_required
def usage():
    """Plan, counts and credits for one business ("X of Y used")."""
    business_id = parse_business_id(request.args.get('business_id'))
    load_owned_business(business_id)
    return jsonify(get_usage_snapshot(business_id).to_dict())


@invoicing.route('/usage/me')
@login_required
def my_usage():
    """Invoices created this month across all of the caller's businesses."""
    count = get_owner_month_count(session['user_id'])
    return jsonify({'user_id': session['user_id'], 'month_count': count})


# ── NEXT NUMBER (preview) ─────────────────────────────────────────

@invoicing.route('/next-number')
@login_required
def next_number():
    """Advisory only; the real number is assigned when the invoice is admitted."""
    business_id = parse_business_id(request.args.get('business_id'))
    load_owned_business(business_id)
    return jsonify({'invoice_number': get_next_invoice_number(business_id)})


# ── LIST / DETAIL ─────────────────────────────────────────────────

PAGE_SIZE_DEFAULT = 20
PAGE_SIZE_MAX     = 100


def _int_arg(name, default):
    try:
        return max(1, int(request.args.get(name, default)))
    except (ValueError, TypeError):
        return default


def _owned_invoice(invoice_id) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        abort(404)
    load_owned_business(invoice.business_id)
    return invoice


@invoicing.route('/')
@login_required
def index():
    """
    Paginated invoice list for one business, newest first.

    Query params: business_id (required), page, limit, q (client name),
    status (draft / sent / paid / overdue).
    """
    business_id = parse_business_id(request.args.get('business_id'))
    load_owned_business(business_id)

    page  = _int_arg('page', 1)
    limit = min(_int_arg('limit', PAGE_SIZE_DEFAULT), PAGE_SIZE_MAX)
    q      = request.args.get('q', '').strip()
    status = request.args.get('status', '').strip()

    query = Invoice.query.filter(Invoice.business_id == business_id)
    if q:
        query = query.filter(Invoice.client_name.ilike(f'%{q}%'))
    if status:
        try:
            query = query.filter(Invoice.status == InvoiceStatus(status))
        except ValueError:
            abort(400, description=f'Unknown status {status!r}.')

    total = query.count()
    rows = (
        query.order_by(desc(Invoice.created_at), desc(Invoice.id))
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return jsonify({
        'invoices': [i.to_dict() for i in rows],
        'page':     page,
        'limit':    limit,
        'total':    total,
    })


@invoicing.route('/<int:invoice_id>')
@login_required
def detail(invoice_id):
    return jsonify(_owned_invoice(invoice_id).to_dict())


@invoicing.route('/<int:invoice_id>/status', methods=['PUT'])
@login_required
def update_status(invoice_id):
    """Move an invoice through draft → sent → paid (or overdue)."""
    invoice = _owned_invoice(invoice_id)
    data = request.get_json(silent=True) or {}
    try:
        new_status = InvoiceStatus(str(data.get('status') or '').strip().lower())
    except ValueError:
        allowed = ', '.join(s.value for s in InvoiceStatus)
        abort(400, description=f'status must be one of: {allowed}.')

    old_status = invoice.status
    invoice.status = new_status
    db.session.commit()

    current_app.logger.info(
        f"Invoice {invoice.invoice_number} (business {invoice.business_id}) "
        f"status {old_status.value} → {new_status.value} by User ID {session['user_id']}"
    )
    return jsonify(invoice.to_dict())


# ── PUBLIC SHARE LINK ─────────────────────────────────────────────

@invoicing.route('/public/<token>')
def public_view(token):
    """Read-only invoice lookup by share token; no login."""
    invoice = Invoice.query.filter_by(public_token=token).first()
    if invoice is None:
        abort(404)
    data = invoice.to_dict()
    data.pop('public_token')
    data['business_name'] = invoice.business.name
    return jsonify(data)
