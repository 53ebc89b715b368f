from flask import Blueprint

inspections_bp = Blueprint("inspections", __name__, url_prefix="/inspections")

# import routes so they register on the blueprint
from . import routes  # noqa: E402,F401
