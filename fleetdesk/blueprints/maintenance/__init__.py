from flask import Blueprint

maintenance_bp = Blueprint("maintenance", __name__, url_prefix="/maintenance")

# import routes so they register on the blueprint
from . import routes  # noqa: E402,F401
