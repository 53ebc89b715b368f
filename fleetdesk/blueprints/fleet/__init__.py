from flask import Blueprint

fleet_bp = Blueprint("fleet", __name__, url_prefix="/fleet")

# import routes so they register on the blueprint
from . import routes  # noqa: E402,F401
