import enum
import uuid
from datetime import datetime
from decimal import Decimal
from invoicer import db


class InvoiceSequence(db.Model):
    """
    One row per business — holds the last-issued invoice sequence number.

    Why a dedicated row instead of MAX(invoice_number) + 1?
    ────────────────────────────────────────────────────────
    Two transactions reading the same MAX compute the same "next" number:

        Tx A: MAX = INV0015  →  next = INV0016   ┐
        Tx B: MAX = INV0015  →  next = INV0016   ┘  ← duplicate

    With this row + SELECT FOR UPDATE the second transaction blocks until
    the first commits and then reads the advanced counter. The
    (business_id, invoice_number) unique constraint on invoices is the
    backstop: if anything slips past the lock, the insert fails and the
    admission is retried with a fresh number.
    """
    __tablename__ = 'invoice_sequences'

    business_id = db.Column(db.Integer, db.ForeignKey('businesses.id', ondelete='CASCADE'),
                            primary_key=True)
    last_seq    = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<InvoiceSequence business={self.business_id} last_seq={self.last_seq}>"


class InvoiceStatus(enum.Enum):
    draft   = "draft"
    sent    = "sent"
    paid    = "paid"
    overdue = "overdue"


def _public_token() -> str:
    return uuid.uuid4().hex


class Invoice(db.Model):
    """
    One issued invoice. `invoice_number` is assigned once at admission and
    never rewritten; renderers display it as-is.
    """
    __tablename__ = 'invoices'
    __table_args__ = (
        db.UniqueConstraint('business_id', 'invoice_number', name='uq_invoice_number_per_business'),
        db.Index('ix_invoices_business_created', 'business_id', 'created_at'),
    )

    id             = db.Column(db.Integer, primary_key=True)
    business_id    = db.Column(db.Integer, db.ForeignKey('businesses.id', ondelete='CASCADE'),
                               nullable=False)
    author_id      = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    invoice_number = db.Column(db.String(20), nullable=False)
    client_name    = db.Column(db.String(200), nullable=False)
    total_amount   = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    due_date       = db.Column(db.Date, nullable=True)
    notes          = db.Column(db.Text, nullable=True)
    status         = db.Column(db.Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.draft)
    public_token   = db.Column(db.String(32), nullable=False, unique=True, default=_public_token)
    created_at     = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    author = db.relationship('User', lazy='select')

    def to_dict(self) -> dict:
        return {
            'id':             self.id,
            'business_id':    self.business_id,
            'invoice_number': self.invoice_number,
            'client_name':    self.client_name,
            'total_amount':   str(Decimal(str(self.total_amount)).quantize(Decimal('0.01'))),
            'due_date':       self.due_date.isoformat() if self.due_date else None,
            'notes':          self.notes,
            'status':         self.status.value,
            'public_token':   self.public_token,
            'created_at':     self.created_at.isoformat(),
        }

    def __repr__(self):
        return f"<Invoice {self.invoice_number!r} business={self.business_id}>"
