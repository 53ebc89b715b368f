from flask import Blueprint

statistics_bp = Blueprint("statistics", __name__, url_prefix="/statistics")

# import routes so they register on the blueprint
from . import routes  # noqa: E402,F401
