"""
invoicer/invoicing/errors.py
----------------------------
Faults raised by the invoicing core.

Plan-limit denials are NOT here: a denial is a normal business outcome and
is returned as a `Denial` value (see policy.py), never raised.
"""


class InvoicingError(Exception):
    """Base class; carries the machine-readable code and HTTP status."""
    code = 'ERROR'
    status_code = 500

    def __init__(self, message=None):
        self.message = message or self.__class__.__doc__.strip().splitlines()[0]
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {'error': self.code, 'message': self.message}


class InvalidQuantity(InvoicingError):
    """Credit quantity must be a positive integer."""
    code = 'INVALID_QUANTITY'
    status_code = 400


class InvalidPayload(InvoicingError):
    """Request data failed validation."""
    code = 'VALIDATION_ERROR'
    status_code = 400

    def __init__(self, errors, message=None):
        self.errors = errors
        super().__init__(message)

    def to_dict(self) -> dict:
        return {**super().to_dict(), 'fields': self.errors}


class NotFound(InvoicingError):
    """Business not found."""
    code = 'NOT_FOUND'
    status_code = 404


class Transient(InvoicingError):
    """Storage is temporarily unavailable. Please retry."""
    code = 'TRANSIENT'
    status_code = 503


class AdmissionConflict(InvoicingError):
    """Concurrent admission changed the business state; retry the attempt."""
    code = 'CONFLICT'
    status_code = 409


class SequenceConflict(AdmissionConflict):
    """Invoice number already taken by a concurrent admission."""
    code = 'SEQUENCE_CONFLICT'
