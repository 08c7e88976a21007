"""
invoicer/main/routes.py
───────────────────────
Liveness endpoint for load balancers and monitoring.
"""
from datetime import datetime

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from invoicer import db
from invoicer.main import main
from invoicer.utils.retry import is_transient


@main.route("/health")
def health():
    """Report whether the database answers a trivial query."""
    status = "ok"
    details = {"db": "ok"}

    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        db.session.rollback()
        status = "error"
        details["db"] = "unreachable" if is_transient(e) else "error"
        current_app.logger.error(f"Health check failed (DB): {e}")

    response = {
        "status": status,
        "timestamp": datetime.utcnow().isoformat(),
        "details": details,
    }
    return response, 200 if status == "ok" else 503
