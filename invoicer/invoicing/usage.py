"""
invoicer/invoicing/usage.py
---------------------------
Read-only invoice counters used for plan-limit checks.

Admission limits are evaluated per BUSINESS for every tier. The per-owner
month count exists for the "invoices this month across all my businesses"
display and is never consulted by admission.

Timestamps are stored as naive UTC. The calendar month is taken in the
configured APP_TIMEZONE and its bounds converted back to naive UTC, so a
business in UTC-5 rolls over at local midnight, not at 00:00 UTC.
"""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context
from sqlalchemy import func

from invoicer.businesses.models import Business
from invoicer.invoicing.models import Invoice


def _configured_timezone() -> str:
    if has_app_context():
        return current_app.config.get('APP_TIMEZONE', 'UTC')
    return 'UTC'


def month_window(now=None, tz_name=None):
    """
    Return (start, end) naive-UTC bounds of the calendar month containing `now`.

    `now` is naive UTC (as stored in created_at). The window is half-open:
    start <= created_at < end, where end is the first instant of next month.
    """
    now = now or datetime.utcnow()
    tz  = ZoneInfo(tz_name or _configured_timezone())

    local = now.replace(tzinfo=timezone.utc).astimezone(tz)
    start_local = datetime(local.year, local.month, 1, tzinfo=tz)
    if local.month == 12:
        end_local = datetime(local.year + 1, 1, 1, tzinfo=tz)
    else:
        end_local = datetime(local.year, local.month + 1, 1, tzinfo=tz)

    def _to_utc(dt):
        return dt.astimezone(timezone.utc).replace(tzinfo=None)

    return _to_utc(start_local), _to_utc(end_local)


def count_all_time(db_session, business_id) -> int:
    """Invoices ever created for the business (0 if none)."""
    return db_session.query(func.count(Invoice.id)).filter(
        Invoice.business_id == business_id
    ).scalar() or 0


def count_current_month(db_session, business_id, now=None, tz_name=None) -> int:
    """Invoices created for the business in the current calendar month."""
    start, end = month_window(now, tz_name)
    return db_session.query(func.count(Invoice.id)).filter(
        Invoice.business_id == business_id,
        Invoice.created_at >= start,
        Invoice.created_at < end,
    ).scalar() or 0


def count_current_month_for_owner(db_session, owner_id, now=None, tz_name=None) -> int:
    """Invoices created this month across every business the owner holds."""
    start, end = month_window(now, tz_name)
    return db_session.query(func.count(Invoice.id)).join(
        Business, Business.id == Invoice.business_id
    ).filter(
        Business.owner_id == owner_id,
        Invoice.created_at >= start,
        Invoice.created_at < end,
    ).scalar() or 0
