"""
invoicer/auth/decorators.py
---------------------------
Route-protection decorators for the JSON API.
Usage:
    from invoicer.auth.decorators import login_required, admin_required

    @invoicing.route('/', methods=['POST'])
    @login_required
    def create():
        ...

    @businesses.route('/<int:business_id>/plan', methods=['PUT'])
    @admin_required
    def update_plan(business_id):
        ...
"""
from functools import wraps
from flask import session, abort


def login_required(f):
    """Reject unauthenticated callers with 401 (no 'user_id' in the session)."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_id' not in session:
            abort(401)
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    """
    Allow access only to users with role == 'admin'.
    Unauthenticated callers get 401, authenticated non-admins get 403.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_id' not in session:
            abort(401)
        if session.get('role') != 'admin':
            abort(403)
        return f(*args, **kwargs)
    return decorated
