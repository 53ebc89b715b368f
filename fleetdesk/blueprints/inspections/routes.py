from __future__ import annotations

import logging

from flask import request, redirect, url_for, flash, g
from pymongo.errors import PyMongoError

from fleetdesk.constants.fleet import INSPECTION_TYPES, VEHICLE_INACTIVE
from fleetdesk.extensions import get_db
from fleetdesk.services import procedures
from fleetdesk.utils.forms import clean, oid, to_int, to_float, utcnow
from fleetdesk.utils.layout import render_internal_page
from fleetdesk.utils.pagination import get_pagination_params, paginate_find
from fleetdesk.utils.permissions import route_required
from fleetdesk.utils.validation import check_inspection_mileage, check_fuel_level
from . import inspections_bp

logger = logging.getLogger(__name__)


def _yard_inspectors(db) -> list[dict]:
    return list(db.employees.find({"role": "Inspector", "active": {"$ne": False}}).sort([("name", 1)]))


def _eligible_vehicles(db) -> list[dict]:
    contracted = procedures.vehicle_ids_with_active_contract(db)
    rows = db.vehicles.find({"status": {"$ne": VEHICLE_INACTIVE}}).sort([("plate", 1)])
    return [v for v in rows if v["_id"] in contracted]


def _current_mileage(vehicle: dict | None) -> int:
    if not vehicle:
        return 0
    return int(vehicle.get("total_mileage") or vehicle.get("mileage") or 0)


def _form_state(form) -> dict:
    return {
        "vehicle_id": clean(form.get("vehicle_id")),
        "inspection_type": clean(form.get("inspection_type")) or "CheckIn",
        "employee_id": clean(form.get("employee_id")),
        "mileage": clean(form.get("mileage")),
        "fuel_level": clean(form.get("fuel_level")),
        "dashboard_warning_light": form.get("dashboard_warning_light") in ("1", "on", "true"),
        "notes": clean(form.get("notes")),
    }


def _render_form(db, form_state: dict, inspection: dict | None = None, status: int = 200):
    vehicle_oid = oid(form_state.get("vehicle_id"))
    vehicle = db.vehicles.find_one({"_id": vehicle_oid}) if vehicle_oid else None

    if inspection is None:
        vehicles = _eligible_vehicles(db)
    else:
        vehicles = [vehicle] if vehicle else []

    return render_internal_page(
        "inspections/form.html",
        active_page="inspections",
        form=form_state,
        inspection=inspection,
        inspection_types=INSPECTION_TYPES,
        inspectors=_yard_inspectors(db),
        vehicles=vehicles,
        current_vehicle_mileage=_current_mileage(vehicle),
    ), status


def _validate(db, state: dict, original_mileage: int | None = None, require_contract: bool = True):
    """Returns (doc_fields, vehicle, error)."""
    if state["inspection_type"] not in INSPECTION_TYPES:
        return None, None, "Invalid inspection type."

    vehicle_oid = oid(state["vehicle_id"])
    vehicle = db.vehicles.find_one({"_id": vehicle_oid}) if vehicle_oid else None
    if not vehicle:
        return None, None, "Select a vehicle."
    if require_contract and (
        vehicle.get("status") == VEHICLE_INACTIVE or not procedures.find_active_contract(db, vehicle_oid)
    ):
        return None, vehicle, "Only vehicles with an active contract can be inspected."

    inspector_oid = oid(state["employee_id"])
    inspector = db.employees.find_one({"_id": inspector_oid, "active": {"$ne": False}}) if inspector_oid else None
    if not inspector or inspector.get("role") != "Inspector":
        return None, vehicle, "Select the inspector responsible."

    mileage = to_int(state["mileage"])
    if state["mileage"] and mileage is None:
        return None, vehicle, "Invalid mileage."
    if mileage is not None and mileage < 0:
        return None, vehicle, "Mileage cannot be negative."
    if mileage is not None:
        err = check_inspection_mileage(mileage, _current_mileage(vehicle), original_mileage)
        if err:
            return None, vehicle, err

    fuel_level = to_float(state["fuel_level"])
    if state["fuel_level"] and fuel_level is None:
        return None, vehicle, "Invalid fuel level."
    err = check_fuel_level(fuel_level)
    if err:
        return None, vehicle, err

    fields = {
        "vehicle_id": vehicle["_id"],
        "inspection_type": state["inspection_type"],
        "employee_id": inspector["_id"],
        "inspected_by": inspector.get("name") or "",
        "mileage": mileage,
        "fuel_level": fuel_level,
        "dashboard_warning_light": state["dashboard_warning_light"],
        "notes": state["notes"] or None,
    }
    return fields, vehicle, None


@inspections_bp.get("/")
@route_required
def inspections_page():
    db = get_db()
    page, per_page = get_pagination_params(request.args)

    query = {}
    inspection_type = clean(request.args.get("type"))
    if inspection_type in INSPECTION_TYPES:
        query["inspection_type"] = inspection_type

    inspections, pagination = paginate_find(db.inspections, query, [("inspected_at", -1)], page, per_page)

    vehicle_ids = list({i["vehicle_id"] for i in inspections if i.get("vehicle_id")})
    vehicles = {v["_id"]: v for v in db.vehicles.find({"_id": {"$in": vehicle_ids}})} if vehicle_ids else {}
    for i in inspections:
        v = vehicles.get(i.get("vehicle_id")) or {}
        i["vehicle_label"] = f"{v.get('plate', '')} - {v.get('model', '')}".strip(" -") or "(removed)"

    return render_internal_page(
        "inspections/list.html",
        active_page="inspections",
        inspections=inspections,
        pagination=pagination,
        inspection_types=INSPECTION_TYPES,
        selected_type=inspection_type,
    )


@inspections_bp.get("/new")
@route_required
def inspection_new_page():
    db = get_db()
    state = _form_state(request.args)

    # the logged-in inspector is the default responsible
    if not state["employee_id"] and g.user.get("role") == "Inspector":
        state["employee_id"] = str(g.user["_id"])

    return _render_form(db, state)


@inspections_bp.post("/new")
@route_required
def inspection_create():
    db = get_db()
    state = _form_state(request.form)

    fields, vehicle, err = _validate(db, state)
    if err:
        flash(err, "error")
        return _render_form(db, state, status=400)

    now = utcnow()
    doc = {
        **fields,
        "inspected_at": now,
        "created_at": now,
        "updated_at": now,
        "created_by": g.user["_id"],
    }

    try:
        db.inspections.insert_one(doc)
        procedures.record_vehicle_mileage(db, vehicle["_id"], fields["mileage"])
    except PyMongoError:
        logger.exception("Inspection create failed (vehicle=%s)", vehicle["_id"])
        flash("Error saving inspection.", "error")
        return _render_form(db, state, status=500)

    flash("Inspection saved.", "success")
    return redirect(url_for("inspections.inspections_page"))


@inspections_bp.get("/<inspection_id>/edit")
@route_required
def inspection_edit_page(inspection_id: str):
    db = get_db()
    inspection = db.inspections.find_one({"_id": oid(inspection_id)}) if oid(inspection_id) else None
    if not inspection:
        flash("Inspection not found.", "error")
        return redirect(url_for("inspections.inspections_page"))

    state = {
        "vehicle_id": str(inspection.get("vehicle_id") or ""),
        "inspection_type": inspection.get("inspection_type") or "CheckIn",
        "employee_id": str(inspection.get("employee_id") or ""),
        "mileage": "" if inspection.get("mileage") is None else str(inspection["mileage"]),
        "fuel_level": "" if inspection.get("fuel_level") is None else str(inspection["fuel_level"]),
        "dashboard_warning_light": bool(inspection.get("dashboard_warning_light")),
        "notes": inspection.get("notes") or "",
    }
    return _render_form(db, state, inspection=inspection)


@inspections_bp.post("/<inspection_id>/edit")
@route_required
def inspection_update(inspection_id: str):
    db = get_db()
    inspection = db.inspections.find_one({"_id": oid(inspection_id)}) if oid(inspection_id) else None
    if not inspection:
        flash("Inspection not found.", "error")
        return redirect(url_for("inspections.inspections_page"))

    state = _form_state(request.form)
    # the vehicle of an existing inspection cannot change
    state["vehicle_id"] = str(inspection["vehicle_id"])

    fields, vehicle, err = _validate(
        db,
        state,
        original_mileage=inspection.get("mileage"),
        require_contract=False,
    )
    if err:
        flash(err, "error")
        return _render_form(db, state, inspection=inspection, status=400)

    try:
        db.inspections.update_one(
            {"_id": inspection["_id"]},
            {"$set": {**fields, "updated_at": utcnow(), "updated_by": g.user["_id"]}},
        )
        procedures.record_vehicle_mileage(db, vehicle["_id"], fields["mileage"])
    except PyMongoError:
        logger.exception("Inspection update failed (%s)", inspection_id)
        flash("Error saving inspection.", "error")
        return _render_form(db, state, inspection=inspection, status=500)

    flash("Inspection updated.", "success")
    return redirect(url_for("inspections.inspections_page"))
