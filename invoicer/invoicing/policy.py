"""
invoicer/invoicing/policy.py
----------------------------
Pure-Python plan-limit evaluation.

decide() maps (plan, all-time count, month count, credit balance) to an
admission Decision. No DB access happens here: the caller gathers the
numbers inside its locked transaction and acts on the result.

Tier rules
──────────
  free_user     lifetime total   < FREE_LIFETIME_INVOICE_LIMIT
  professional  calendar month   < PROFESSIONAL_MONTHLY_INVOICE_LIMIT
  enterprise    unlimited

Precedence: the tier limit first; only once it is used up do purchased
credits count; with no credits left the request is denied.
"""
from __future__ import annotations
import enum
from dataclasses import dataclass

from config import FREE_LIFETIME_INVOICE_LIMIT, PROFESSIONAL_MONTHLY_INVOICE_LIMIT
from invoicer.businesses.models import PlanEnum, normalize_plan


NEEDS_PAYMENT = 'NEEDS_PAYMENT'


class Decision(enum.Enum):
    ALLOW            = "allow"
    ALLOW_VIA_CREDIT = "allow_via_credit"
    DENY             = "deny"


class DenialReason(enum.Enum):
    FREE_LIMIT_REACHED    = "FreeLimitReached"
    MONTHLY_LIMIT_REACHED = "MonthlyLimitReached"


@dataclass(frozen=True)
class PlanLimits:
    """Thresholds for the limited tiers; None means unlimited."""
    free_lifetime:        int = FREE_LIFETIME_INVOICE_LIMIT
    professional_monthly: int = PROFESSIONAL_MONTHLY_INVOICE_LIMIT

    @classmethod
    def from_config(cls, app_config) -> PlanLimits:
        return cls(
            free_lifetime=app_config.get('FREE_LIFETIME_INVOICE_LIMIT', FREE_LIFETIME_INVOICE_LIMIT),
            professional_monthly=app_config.get('PROFESSIONAL_MONTHLY_INVOICE_LIMIT',
                                                PROFESSIONAL_MONTHLY_INVOICE_LIMIT),
        )

    def limit_for(self, plan) -> int | None:
        plan = normalize_plan(plan)
        if plan is PlanEnum.free_user:
            return self.free_lifetime
        if plan is PlanEnum.professional:
            return self.professional_monthly
        return None


@dataclass(frozen=True)
class Denial:
    """A refused admission. Callers route this to a buy-credits / upgrade flow."""
    reason:  DenialReason
    plan:    PlanEnum
    limit:   int

    @property
    def signal(self) -> str:
        return NEEDS_PAYMENT

    @property
    def message(self) -> str:
        if self.reason is DenialReason.FREE_LIMIT_REACHED:
            noun = 'invoice' if self.limit == 1 else 'invoices'
            return (f"You've used your {self.limit} free {noun}. "
                    f"Purchase additional invoice credits or upgrade to continue.")
        return (f"You've reached your {self.limit} invoices this month. "
                f"Purchase additional credits or upgrade to Enterprise.")

    def to_dict(self) -> dict:
        return {
            'error':   self.signal,
            'reason':  self.reason.value,
            'plan':    self.plan.value,
            'limit':   self.limit,
            'message': self.message,
        }


@dataclass(frozen=True)
class PolicyDecision:
    """Result of decide(); `denial` is set only when outcome is DENY."""
    outcome: Decision
    denial:  Denial | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome is not Decision.DENY


_ALLOW            = PolicyDecision(Decision.ALLOW)
_ALLOW_VIA_CREDIT = PolicyDecision(Decision.ALLOW_VIA_CREDIT)


def decide(plan, all_time_count: int, month_count: int, credit_balance: int,
           limits: PlanLimits | None = None) -> PolicyDecision:
    """
    Decide whether one more invoice may be created.

    Args:
        plan:            PlanEnum or raw plan string (normalised)
        all_time_count:  invoices ever created by the business
        month_count:     invoices created this calendar month
        credit_balance:  purchased overage credits remaining
        limits:          thresholds; defaults to the configured constants

    Returns:
        PolicyDecision. Never raises.
    """
    limits = limits or PlanLimits()
    plan   = normalize_plan(plan)

    if plan is PlanEnum.free_user:
        used, reason = all_time_count, DenialReason.FREE_LIMIT_REACHED
    elif plan is PlanEnum.professional:
        used, reason = month_count, DenialReason.MONTHLY_LIMIT_REACHED
    else:
        return _ALLOW

    limit = limits.limit_for(plan)
    if limit is None or max(used or 0, 0) < limit:
        return _ALLOW
    if (credit_balance or 0) > 0:
        return _ALLOW_VIA_CREDIT
    return PolicyDecision(Decision.DENY, Denial(reason=reason, plan=plan, limit=limit))
