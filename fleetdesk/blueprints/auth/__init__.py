from flask import Blueprint

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

# import routes so they register on the blueprint
from . import routes  # noqa: E402,F401
