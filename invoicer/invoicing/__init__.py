from flask import Blueprint

invoicing = Blueprint('invoicing', __name__)

from invoicer.invoicing import routes  # noqa: F401, E402
from invoicer.invoicing import models  # noqa: F401, E402  — registers Invoice/InvoiceSequence with SQLAlchemy
