from flask import Blueprint

main = Blueprint('main', __name__)

from invoicer.main import routes  # noqa: F401, E402
