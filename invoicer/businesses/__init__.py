from flask import Blueprint

businesses = Blueprint('businesses', __name__)

from invoicer.businesses import routes  # noqa: F401, E402
from invoicer.businesses import models  # noqa: F401, E402  — registers Business with SQLAlchemy
