from flask import Blueprint

main_bp = Blueprint("main", __name__)

# import routes so they register on the blueprint
from . import routes  # noqa: E402,F401
