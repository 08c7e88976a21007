"""
invoicer/invoicing/admission.py
-------------------------------
Invoice admission: decide whether a business may create one more invoice
and, if so, number and persist it.

One admission attempt is one transaction:

    1. Lock the Business row (SELECT … FOR UPDATE). Same-business
       admissions queue here; other businesses lock other rows.
    2. Count usage and read the credit balance — consistent with commit
       time because nobody else can admit for this business meanwhile.
    3. PlanPolicy.decide().
         DENY              → roll back, return Denial (not an error)
         ALLOW_VIA_CREDIT  → conditional credit decrement; if it finds no
                             credit, re-decide on the fresh balance
    4. Allocate the invoice number and INSERT the invoice.
    5. COMMIT — credit decrement, counter advance and invoice row land
       together or not at all. No credit is ever lost without an invoice.

A unique-constraint violation rolls the attempt back and the whole attempt
is retried (INVOICE_ADMISSION_MAX_ATTEMPTS). Exhausting those, or the
backend being unreachable, raises Transient. A plan-limit denial is never
reported as Transient, and a network blip is never reported as a denial.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from invoicer import db
from invoicer.businesses.models import Business, PlanEnum
from invoicer.invoicing import credits, sequence, usage
from invoicer.invoicing.errors import (
    AdmissionConflict, InvalidPayload, InvoicingError,
    NotFound, SequenceConflict, Transient,
)
from invoicer.invoicing.models import Invoice
from invoicer.invoicing.policy import Decision, PlanLimits, decide
from invoicer.invoicing.validators import parse_invoice_payload, validate_invoice_payload
from invoicer.utils.retry import call_with_retry, is_transient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageSnapshot:
    """Read-only projection for "X of Y invoices used" displays."""
    business_id:    int
    plan:           PlanEnum
    all_time_count: int
    month_count:    int
    credit_balance: int
    limit:          int | None

    @property
    def used(self) -> int:
        if self.plan is PlanEnum.professional:
            return self.month_count
        return self.all_time_count

    @property
    def remaining(self) -> int | None:
        """Tier headroom left (credits not included); None when unlimited."""
        if self.limit is None:
            return None
        return max(self.limit - self.used, 0)

    def to_dict(self) -> dict:
        return {
            'business_id':    self.business_id,
            'plan':           self.plan.value,
            'all_time_count': self.all_time_count,
            'month_count':    self.month_count,
            'credit_balance': self.credit_balance,
            'limit':          self.limit,
            'used':           self.used,
            'remaining':      self.remaining,
        }


# ── Helpers ───────────────────────────────────────────────────────

def _backend_retry(fn, label):
    cfg = current_app.config
    return call_with_retry(
        fn,
        attempts=cfg.get('BACKEND_RETRY_ATTEMPTS', 3),
        retry_on=Transient,
        wait_max=cfg.get('BACKEND_RETRY_WAIT_MAX', 0.0),
        label=label,
    )


def _read_only(fn, action):
    """Run `fn(session)` in its own short read transaction, with transient retry."""
    def run():
        session = db.session
        try:
            result = fn(session)
            session.commit()  # release the read transaction (and SQLite lock)
            return result
        except SQLAlchemyError as exc:
            session.rollback()
            if is_transient(exc):
                logger.warning("%s: backend unavailable: %s", action, exc)
                raise Transient() from exc
            raise
        except InvoicingError:
            session.rollback()
            raise

    return _backend_retry(run, action)


def _lock_business(db_session, business_id):
    business = (
        db_session.query(Business)
        .filter(Business.id == business_id)
        .with_for_update()
        .populate_existing()   # the caller may have loaded it before the lock
        .first()
    )
    if business is None:
        raise NotFound(f'Business {business_id} not found.')
    return business


# ── One attempt ───────────────────────────────────────────────────

def _admit_once(business_id, fields, author_id, now):
    session = db.session
    cfg     = current_app.config
    now     = now or datetime.utcnow()
    limits  = PlanLimits.from_config(cfg)

    try:
        business = _lock_business(session, business_id)
        plan     = business.plan

        all_time = usage.count_all_time(session, business_id)
        month    = usage.count_current_month(session, business_id, now=now,
                                             tz_name=cfg.get('APP_TIMEZONE'))
        balance  = credits.get_balance(session, business_id)

        decision = decide(plan, all_time, month, balance, limits)

        if decision.outcome is Decision.ALLOW_VIA_CREDIT:
            if not credits.try_consume_one(session, business_id):
                # Someone drained the last credit first; judge the fresh balance
                balance  = credits.get_balance(session, business_id)
                decision = decide(plan, all_time, month, balance, limits)
                if decision.outcome is not Decision.DENY:
                    raise AdmissionConflict(
                        f'Credit balance of business {business_id} changed during admission.'
                    )

        if decision.outcome is Decision.DENY:
            session.rollback()
            logger.info(
                "Invoice denied for business %s: %s (plan=%s all_time=%d month=%d credits=%d)",
                business_id, decision.denial.reason.value, plan.value, all_time, month, balance,
            )
            return decision.denial

        invoice_number = sequence.next_invoice_number(session, business_id)
        invoice = Invoice(
            business_id    = business_id,
            author_id      = author_id,
            invoice_number = invoice_number,
            created_at     = now,
            **fields,
        )
        session.add(invoice)
        session.flush()
        session.commit()

    except IntegrityError as exc:
        session.rollback()
        if not sequence.is_number_collision(exc):
            logger.error("Invoice admission for business %s violated a constraint: %s",
                         business_id, exc.orig)
            raise
        raise SequenceConflict(
            f'Invoice number collision for business {business_id}.'
        ) from exc

    except SQLAlchemyError as exc:
        session.rollback()
        if is_transient(exc):
            logger.warning("Invoice admission for business %s: backend unavailable: %s",
                           business_id, exc)
            raise Transient() from exc
        raise

    except InvoicingError:
        session.rollback()
        raise

    logger.info(
        "Invoice %s admitted for business %s (%s)",
        invoice_number, business_id,
        'via credit' if decision.outcome is Decision.ALLOW_VIA_CREDIT else 'within plan',
    )
    return invoice


# ── Public API ────────────────────────────────────────────────────

def request_creation(business_id, payload, author_id=None, now=None):
    """
    Admit, number and persist one invoice.

    Args:
        business_id: target business (caller has already checked ownership)
        payload:     raw invoice fields (client_name, total_amount, …)
        author_id:   authenticated user creating the invoice
        now:         naive-UTC clock override, used for created_at and the
                     monthly window

    Returns:
        Invoice on success, Denial when the plan limit is reached and no
        credit is left.

    Raises:
        InvalidPayload, NotFound, Transient
    """
    errors = validate_invoice_payload(payload or {})
    if errors:
        raise InvalidPayload(errors)
    fields = parse_invoice_payload(payload)

    cfg = current_app.config
    label = f'Invoice admission for business {business_id}'

    def attempt():
        return _backend_retry(lambda: _admit_once(business_id, fields, author_id, now), label)

    try:
        return call_with_retry(
            attempt,
            attempts=cfg.get('INVOICE_ADMISSION_MAX_ATTEMPTS', 3),
            retry_on=AdmissionConflict,
            wait_max=cfg.get('BACKEND_RETRY_WAIT_MAX', 0.0),
            label=label,
        )
    except AdmissionConflict as exc:
        logger.error("%s gave up after repeated conflicts: %s", label, exc)
        raise Transient('Could not allocate an invoice number. Please retry.') from exc


def get_usage_snapshot(business_id, now=None) -> UsageSnapshot:
    """Current plan, counts and credit balance of a business (read-only)."""
    cfg = current_app.config

    def read(session):
        plan = session.query(Business.plan).filter(Business.id == business_id).scalar()
        if plan is None:
            raise NotFound(f'Business {business_id} not found.')
        return UsageSnapshot(
            business_id    = business_id,
            plan           = plan,
            all_time_count = usage.count_all_time(session, business_id),
            month_count    = usage.count_current_month(session, business_id, now=now,
                                                       tz_name=cfg.get('APP_TIMEZONE')),
            credit_balance = credits.get_balance(session, business_id),
            limit          = PlanLimits.from_config(cfg).limit_for(plan),
        )

    return _read_only(read, f'Usage snapshot for business {business_id}')


def get_next_invoice_number(business_id) -> str:
    """Advisory preview of the next number (no reservation is made)."""
    def read(session):
        if session.query(Business.id).filter(Business.id == business_id).scalar() is None:
            raise NotFound(f'Business {business_id} not found.')
        return sequence.peek_next_invoice_number(session, business_id)

    return _read_only(read, f'Next-number preview for business {business_id}')


def get_owner_month_count(owner_id, now=None) -> int:
    """Invoices created this month across all of an owner's businesses."""
    cfg = current_app.config
    return _read_only(
        lambda session: usage.count_current_month_for_owner(
            session, owner_id, now=now, tz_name=cfg.get('APP_TIMEZONE')),
        f'Monthly usage for owner {owner_id}',
    )
