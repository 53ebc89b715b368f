from flask import Blueprint

purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/purchases")

# import routes so they register on the blueprint
from . import routes  # noqa: E402,F401
