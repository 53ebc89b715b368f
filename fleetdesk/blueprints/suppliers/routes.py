from __future__ import annotations

import logging

from flask import request, redirect, url_for, flash, g
from pymongo.errors import PyMongoError

from fleetdesk.extensions import get_db
from fleetdesk.utils.forms import clean, oid, utcnow
from fleetdesk.utils.layout import render_internal_page
from fleetdesk.utils.pagination import get_pagination_params, paginate_find
from fleetdesk.utils.permissions import route_required
from . import suppliers_bp

logger = logging.getLogger(__name__)


def _load_supplier(supplier_id: str):
    sid = oid(supplier_id)
    if not sid:
        flash("Invalid supplier id.", "error")
        return None
    existing = get_db().suppliers.find_one({"_id": sid})
    if not existing:
        flash("Supplier not found.", "error")
    return existing


@suppliers_bp.get("/")
@route_required
def suppliers_page():
    page, per_page = get_pagination_params(request.args, default_per_page=20, max_per_page=100)
    suppliers, pagination = paginate_find(
        get_db().suppliers,
        {},
        [("is_active", -1), ("name", 1), ("created_at", -1)],
        page,
        per_page,
    )

    return render_internal_page(
        "suppliers/list.html",
        active_page="suppliers",
        suppliers=suppliers,
        pagination=pagination,
    )


@suppliers_bp.post("/create")
@route_required
def suppliers_create():
    name = clean(request.form.get("name"))
    if not name:
        flash("Supplier name is required.", "error")
        return redirect(url_for("suppliers.suppliers_page"))

    now = utcnow()
    doc = {
        "name": name,
        "document": clean(request.form.get("document")) or None,
        "phone": clean(request.form.get("phone")) or None,
        "email": clean(request.form.get("email")).lower() or None,
        "notes": clean(request.form.get("notes")) or None,
        "is_active": True,
        "created_at": now,
        "updated_at": now,
        "created_by": g.user["_id"],
        "updated_by": g.user["_id"],
        "deactivated_at": None,
        "deactivated_by": None,
    }

    try:
        get_db().suppliers.insert_one(doc)
    except PyMongoError:
        logger.exception("Supplier create failed (%s)", name)
        flash("Error saving supplier.", "error")
        return redirect(url_for("suppliers.suppliers_page"))

    flash("Supplier created successfully.", "success")
    return redirect(url_for("suppliers.suppliers_page"))


@suppliers_bp.post("/<supplier_id>/deactivate")
@route_required
def suppliers_deactivate(supplier_id: str):
    existing = _load_supplier(supplier_id)
    if not existing:
        return redirect(url_for("suppliers.suppliers_page"))

    if existing.get("is_active") is False:
        flash("Supplier is already deactivated.", "info")
        return redirect(url_for("suppliers.suppliers_page"))

    now = utcnow()
    get_db().suppliers.update_one(
        {"_id": existing["_id"]},
        {"$set": {
            "is_active": False,
            "updated_at": now,
            "updated_by": g.user["_id"],
            "deactivated_at": now,
            "deactivated_by": g.user["_id"],
        }},
    )

    flash("Supplier deactivated.", "success")
    return redirect(url_for("suppliers.suppliers_page"))


@suppliers_bp.post("/<supplier_id>/restore")
@route_required
def suppliers_restore(supplier_id: str):
    existing = _load_supplier(supplier_id)
    if not existing:
        return redirect(url_for("suppliers.suppliers_page"))

    if existing.get("is_active") is not False:
        flash("Supplier is already active.", "info")
        return redirect(url_for("suppliers.suppliers_page"))

    get_db().suppliers.update_one(
        {"_id": existing["_id"]},
        {"$set": {
            "is_active": True,
            "updated_at": utcnow(),
            "updated_by": g.user["_id"],
            "deactivated_at": None,
            "deactivated_by": None,
        }},
    )

    flash("Supplier restored.", "success")
    return redirect(url_for("suppliers.suppliers_page"))
