"""
invoicer/businesses/access.py
-----------------------------
Resolve a business id from a request and check the session user may act
on it. Admins may act on any business.
"""
from flask import abort, session

from invoicer import db
from invoicer.businesses.models import Business


def parse_business_id(raw):
    """Coerce a query-string / JSON business id; 400 if missing or malformed."""
    try:
        business_id = int(raw)
    except (TypeError, ValueError):
        abort(400, description='business_id is required and must be an integer.')
    if business_id <= 0:
        abort(400, description='business_id must be positive.')
    return business_id


def load_owned_business(business_id) -> Business:
    """Return the business if the session user owns it (or is admin); else 404/403."""
    business = db.session.get(Business, business_id)
    if business is None:
        abort(404)
    if session.get('role') != 'admin' and business.owner_id != session.get('user_id'):
        abort(403)
    return business
