from flask import Blueprint

payments = Blueprint('payments', __name__)

from invoicer.payments import routes  # noqa: F401, E402
