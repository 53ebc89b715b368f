from flask import Blueprint

suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/suppliers")

# import routes so they register on the blueprint
from . import routes  # noqa: E402,F401
