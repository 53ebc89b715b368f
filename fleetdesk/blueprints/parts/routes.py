from __future__ import annotations

import logging

from flask import request, redirect, url_for, flash, g
from pymongo.errors import DuplicateKeyError, PyMongoError

from fleetdesk.extensions import get_db
from fleetdesk.utils.forms import clean, oid, to_float, to_int, utcnow
from fleetdesk.utils.layout import render_internal_page
from fleetdesk.utils.pagination import get_pagination_params, paginate_find
from fleetdesk.utils.parts_search import build_parts_query, build_parts_search_terms
from fleetdesk.utils.permissions import route_required
from . import parts_bp

logger = logging.getLogger(__name__)


def _set_active(part_id: str, active: bool):
    db = get_db()
    pid = oid(part_id)
    if not pid:
        flash("Invalid part id.", "error")
        return redirect(url_for("parts.parts_page"))

    existing = db.parts.find_one({"_id": pid})
    if not existing:
        flash("Part not found.", "error")
        return redirect(url_for("parts.parts_page"))

    if (existing.get("is_active") is not False) == active:
        flash("Part is already active." if active else "Part is already deactivated.", "info")
        return redirect(url_for("parts.parts_page"))

    now = utcnow()
    db.parts.update_one(
        {"_id": pid},
        {"$set": {
            "is_active": active,
            "updated_at": now,
            "updated_by": g.user["_id"],
            "deactivated_at": None if active else now,
            "deactivated_by": None if active else g.user["_id"],
        }},
    )

    flash("Part restored." if active else "Part deactivated.", "success")
    return redirect(url_for("parts.parts_page"))


@parts_bp.get("/")
@route_required
def parts_page():
    db = get_db()
    q = clean(request.args.get("q"))
    show_inactive = request.args.get("inactive") == "1"

    query = {} if show_inactive else {"is_active": {"$ne": False}}
    query.update(build_parts_query(q))

    page, per_page = get_pagination_params(request.args)
    parts, pagination = paginate_find(db.parts, query, [("name", 1), ("sku", 1)], page, per_page)

    for p in parts:
        p["low_stock"] = int(p.get("quantity") or 0) <= int(p.get("min_quantity") or 0)

    return render_internal_page(
        "parts/list.html",
        active_page="parts",
        parts=parts,
        pagination=pagination,
        q=q,
        show_inactive=show_inactive,
    )


@parts_bp.post("/create")
@route_required
def parts_create():
    sku = clean(request.form.get("sku")).upper()
    name = clean(request.form.get("name"))
    quantity = to_int(request.form.get("quantity"), 0)
    min_quantity = to_int(request.form.get("min_quantity"), 0)
    unit_cost = to_float(request.form.get("unit_cost"), 0.0)

    if not sku or not name:
        flash("SKU and name are required.", "error")
        return redirect(url_for("parts.parts_page"))

    if quantity is None or quantity < 0 or min_quantity is None or min_quantity < 0:
        flash("Quantities cannot be negative.", "error")
        return redirect(url_for("parts.parts_page"))

    if unit_cost is None or unit_cost < 0:
        flash("Unit cost cannot be negative.", "error")
        return redirect(url_for("parts.parts_page"))

    now = utcnow()
    doc = {
        "sku": sku,
        "name": name,
        "quantity": quantity,
        "min_quantity": min_quantity,
        "unit_cost": float(unit_cost),
        "search_terms": build_parts_search_terms(sku, name),
        "is_active": True,
        "created_at": now,
        "updated_at": now,
        "created_by": g.user["_id"],
        "updated_by": g.user["_id"],
        "deactivated_at": None,
        "deactivated_by": None,
    }

    try:
        get_db().parts.insert_one(doc)
    except DuplicateKeyError:
        flash("SKU already exists.", "error")
        return redirect(url_for("parts.parts_page"))
    except PyMongoError:
        logger.exception("Part create failed (%s)", sku)
        flash("Error saving part.", "error")
        return redirect(url_for("parts.parts_page"))

    flash("Part created successfully.", "success")
    return redirect(url_for("parts.parts_page"))


@parts_bp.post("/<part_id>/deactivate")
@route_required
def parts_deactivate(part_id: str):
    return _set_active(part_id, False)


@parts_bp.post("/<part_id>/restore")
@route_required
def parts_restore(part_id: str):
    return _set_active(part_id, True)
