"""
invoicer/businesses/limits.py
-----------------------------
How many businesses an owner may hold.

  free_user     1
  professional  3
  enterprise    unlimited

The owner's plan is the best plan among the businesses they already hold;
an owner with no business is treated as free_user. A new business inherits
that plan.
"""
from __future__ import annotations
from dataclasses import dataclass

from sqlalchemy import func

from config import FREE_BUSINESS_LIMIT, PROFESSIONAL_BUSINESS_LIMIT
from invoicer.auth.models import User
from invoicer.businesses.models import Business, PlanEnum, PLAN_RANK


BUSINESS_LIMITS = {
    PlanEnum.free_user:    FREE_BUSINESS_LIMIT,
    PlanEnum.professional: PROFESSIONAL_BUSINESS_LIMIT,
    PlanEnum.enterprise:   None,
}


@dataclass(frozen=True)
class BusinessQuota:
    plan:    PlanEnum
    count:   int
    limit:   int | None

    @property
    def can_create(self) -> bool:
        return self.limit is None or self.count < self.limit

    @property
    def message(self) -> str:
        if self.can_create:
            return 'OK'
        if self.plan is PlanEnum.free_user:
            return f'Free plan limit reached: {self.limit} business max. Upgrade to add more.'
        return f'Professional plan limit reached: {self.limit} businesses max. Contact support for assistance.'


def business_limit_for(plan) -> int | None:
    return BUSINESS_LIMITS.get(plan, FREE_BUSINESS_LIMIT)


def owner_plan(db_session, owner_id) -> PlanEnum:
    plans = [p for (p,) in db_session.query(Business.plan).filter(Business.owner_id == owner_id)]
    return max(plans, key=PLAN_RANK.get, default=PlanEnum.free_user)


def lock_owner(db_session, owner_id) -> bool:
    """
    Take the owner's users row FOR UPDATE. Concurrent business creations for
    one owner queue here, so the count below stays true until commit.
    Returns False if the owner no longer exists.
    """
    locked = db_session.query(User.id).filter(User.id == owner_id).with_for_update().scalar()
    return locked is not None


def check_business_quota(db_session, owner_id) -> BusinessQuota:
    """Run after lock_owner(), in the transaction that inserts the business."""
    plan  = owner_plan(db_session, owner_id)
    count = db_session.query(func.count(Business.id)).filter(
        Business.owner_id == owner_id
    ).scalar() or 0
    return BusinessQuota(plan=plan, count=count, limit=business_limit_for(plan))
