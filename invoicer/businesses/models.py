import enum
from datetime import datetime
from invoicer import db


class PlanEnum(enum.Enum):
    free_user    = "free_user"
    professional = "professional"
    enterprise   = "enterprise"


# Older payment metadata still carries the short names
_PLAN_ALIASES = {
    'free': PlanEnum.free_user,
    'pro':  PlanEnum.professional,
}


def normalize_plan(raw) -> PlanEnum:
    """Map any stored / incoming plan value to a PlanEnum; unknown → free_user."""
    if isinstance(raw, PlanEnum):
        return raw
    value = raw.strip().lower() if isinstance(raw, str) else ''
    try:
        return PlanEnum(value)
    except ValueError:
        return _PLAN_ALIASES.get(value, PlanEnum.free_user)


# Higher rank wins when an owner's businesses disagree
PLAN_RANK = {
    PlanEnum.free_user:    0,
    PlanEnum.professional: 1,
    PlanEnum.enterprise:   2,
}


class Business(db.Model):
    """
    Tenant root. Invoices, the invoice-number counter and the purchased
    credit balance all hang off this row.

    The row doubles as the per-business admission lock: every invoice
    creation takes SELECT … FOR UPDATE on it before counting usage.
    """
    __tablename__ = 'businesses'
    __table_args__ = (
        db.CheckConstraint('extra_invoice_credits >= 0', name='check_credits_non_negative'),
    )

    id                    = db.Column(db.Integer, primary_key=True)
    owner_id              = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    name                  = db.Column(db.String(200), nullable=False)
    plan                  = db.Column(db.Enum(PlanEnum), nullable=False, default=PlanEnum.free_user)
    extra_invoice_credits = db.Column(db.Integer, nullable=False, default=0)
    created_at            = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # ── Relationships ─────────────────────────────────────────────
    owner    = db.relationship('User', backref=db.backref('businesses', lazy='dynamic'))
    invoices = db.relationship('Invoice', backref='business', lazy='dynamic',
                               cascade='all, delete-orphan', passive_deletes=True)
    sequence = db.relationship('InvoiceSequence', uselist=False,
                               cascade='all, delete-orphan', passive_deletes=True)

    def to_dict(self) -> dict:
        return {
            'id':                    self.id,
            'name':                  self.name,
            'plan':                  self.plan.value,
            'extra_invoice_credits': self.extra_invoice_credits,
            'created_at':            self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Business {self.id} {self.name!r} plan={self.plan.value} credits={self.extra_invoice_credits}>"
