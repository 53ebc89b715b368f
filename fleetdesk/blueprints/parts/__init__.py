from flask import Blueprint

parts_bp = Blueprint("parts", __name__, url_prefix="/inventory")

# import routes so they register on the blueprint
from . import routes  # noqa: E402,F401
