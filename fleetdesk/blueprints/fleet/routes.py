from __future__ import annotations

import logging
import re

from flask import request, redirect, url_for, flash, jsonify, g
from pymongo.errors import DuplicateKeyError, PyMongoError

from fleetdesk.constants.fleet import VEHICLE_STATUSES, VEHICLE_INACTIVE
from fleetdesk.extensions import get_db
from fleetdesk.services import procedures
from fleetdesk.utils.forms import clean, oid, to_int, utcnow
from fleetdesk.utils.layout import render_internal_page
from fleetdesk.utils.pagination import get_pagination_params, paginate_find
from fleetdesk.utils.permissions import route_required
from . import fleet_bp

logger = logging.getLogger(__name__)

# roles allowed to create/delete vehicles (others only browse)
FLEET_MANAGERS = ("Admin", "Manager")


def _can_manage_fleet() -> bool:
    return (g.user or {}).get("role") in FLEET_MANAGERS


def _vehicle_search_query(q: str) -> dict:
    if not q:
        return {}
    pattern = re.escape(q)
    return {"$or": [
        {"plate": {"$regex": pattern, "$options": "i"}},
        {"model": {"$regex": pattern, "$options": "i"}},
    ]}


def vehicle_to_json(v: dict, contracted_ids: set) -> dict:
    return {
        "id": str(v["_id"]),
        "plate": v.get("plate") or "",
        "model": v.get("model") or "",
        "year": v.get("year"),
        "type": v.get("type") or "",
        "status": procedures.actual_vehicle_status(v, contracted_ids),
        "location": v.get("location") or "",
        "mileage": v.get("total_mileage") or v.get("mileage") or 0,
    }


@fleet_bp.get("/")
@route_required
def vehicles_page():
    db = get_db()
    q = clean(request.args.get("q"))

    page, per_page = get_pagination_params(request.args)
    vehicles, pagination = paginate_find(
        db.vehicles,
        _vehicle_search_query(q),
        [("plate", 1)],
        page,
        per_page,
    )

    contracted = procedures.vehicle_ids_with_active_contract(db)
    for v in vehicles:
        v["actual_status"] = procedures.actual_vehicle_status(v, contracted)

    return render_internal_page(
        "fleet/vehicles.html",
        active_page="fleet",
        vehicles=vehicles,
        pagination=pagination,
        q=q,
        statuses=VEHICLE_STATUSES,
        can_manage=_can_manage_fleet(),
    )


@fleet_bp.post("/create")
@route_required
def vehicle_create():
    if not _can_manage_fleet():
        flash("Access denied.", "error")
        return redirect(url_for("fleet.vehicles_page"))

    plate = clean(request.form.get("plate")).upper()
    model = clean(request.form.get("model"))
    status = clean(request.form.get("status")) or "Available"
    mileage = to_int(request.form.get("mileage"), 0)

    if not plate or not model:
        flash("Plate and model are required.", "error")
        return redirect(url_for("fleet.vehicles_page"))

    if status not in VEHICLE_STATUSES:
        flash("Invalid status.", "error")
        return redirect(url_for("fleet.vehicles_page"))

    if mileage is None or mileage < 0:
        flash("Mileage cannot be negative.", "error")
        return redirect(url_for("fleet.vehicles_page"))

    now = utcnow()
    doc = {
        "plate": plate,
        "model": model,
        "year": to_int(request.form.get("year")),
        "type": clean(request.form.get("type")) or None,
        "status": status,
        "location": clean(request.form.get("location")) or None,
        "mileage": mileage,
        "total_mileage": mileage,
        "created_at": now,
        "updated_at": now,
        "created_by": g.user["_id"],
    }

    try:
        get_db().vehicles.insert_one(doc)
    except DuplicateKeyError:
        flash("A vehicle with this plate already exists.", "error")
        return redirect(url_for("fleet.vehicles_page"))
    except PyMongoError:
        logger.exception("Vehicle create failed (%s)", plate)
        flash("Error saving vehicle.", "error")
        return redirect(url_for("fleet.vehicles_page"))

    flash("Vehicle created.", "success")
    return redirect(url_for("fleet.vehicles_page"))


@fleet_bp.get("/api/search")
@route_required
def api_vehicle_search():
    """
    Vehicle picker for inspections: only vehicles that are not inactive
    and have a contract running today.
    """
    db = get_db()
    q = clean(request.args.get("q")).lower()

    contracted = procedures.vehicle_ids_with_active_contract(db)
    candidates = list(db.vehicles.find({"status": {"$ne": VEHICLE_INACTIVE}}).sort([("plate", 1)]))
    eligible = [v for v in candidates if v["_id"] in contracted]

    if q:
        eligible = [
            v for v in eligible
            if q in (v.get("plate") or "").lower() or q in (v.get("model") or "").lower()
        ]

    return jsonify({
        "ok": True,
        "vehicles": [vehicle_to_json(v, contracted) for v in eligible],
        "with_active_contract": sum(1 for v in candidates if v["_id"] in contracted),
        "total_vehicles": len(candidates),
    })


@fleet_bp.get("/<vehicle_id>/delete")
@route_required
def vehicle_delete_page(vehicle_id: str):
    if not _can_manage_fleet():
        flash("Access denied.", "error")
        return redirect(url_for("fleet.vehicles_page"))

    impact = procedures.get_vehicle_deletion_impact(get_db(), vehicle_id)
    if not impact["vehicle_exists"]:
        flash("Vehicle not found.", "error")
        return redirect(url_for("fleet.vehicles_page"))

    return render_internal_page(
        "fleet/vehicle_delete.html",
        active_page="fleet",
        vehicle_id=vehicle_id,
        impact=impact,
    )


@fleet_bp.get("/api/<vehicle_id>/deletion-impact")
@route_required
def api_vehicle_deletion_impact(vehicle_id: str):
    if not _can_manage_fleet():
        return jsonify({"ok": False, "error": "forbidden"}), 403
    if not oid(vehicle_id):
        return jsonify({"ok": False, "error": "invalid_id"}), 400
    impact = procedures.get_vehicle_deletion_impact(get_db(), vehicle_id)
    return jsonify({"ok": True, "impact": impact})


@fleet_bp.post("/<vehicle_id>/delete")
@route_required
def vehicle_delete(vehicle_id: str):
    if not _can_manage_fleet():
        flash("Access denied.", "error")
        return redirect(url_for("fleet.vehicles_page"))

    try:
        result = procedures.safe_delete_vehicle(get_db(), vehicle_id)
    except PyMongoError:
        logger.exception("Vehicle delete failed (%s)", vehicle_id)
        flash("Error deleting vehicle.", "error")
        return redirect(url_for("fleet.vehicles_page"))

    flash(result["message"], "success" if result["success"] else "error")
    return redirect(url_for("fleet.vehicles_page"))
