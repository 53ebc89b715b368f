from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from flask import request, redirect, url_for, flash, jsonify, g
from pymongo.errors import DuplicateKeyError, PyMongoError

from fleetdesk.constants.fleet import (
    CHECKIN_OVERDUE_HOURS,
    SERVICEABLE_VEHICLE_STATUSES,
    SERVICE_NOTE_DEFAULT_PRIORITY,
    SERVICE_NOTE_DEFAULT_STATUS,
    SERVICE_NOTE_PRIORITIES,
    SERVICE_NOTE_STATUSES,
)
from fleetdesk.extensions import get_db
from fleetdesk.services import procedures
from fleetdesk.services.parts_cart import add_to_cart, parse_cart, price_cart
from fleetdesk.utils.forms import clean, oid, parse_iso_date, to_float, to_int, today_iso, utcnow
from fleetdesk.utils.layout import render_internal_page
from fleetdesk.utils.pagination import get_pagination_params, paginate_find
from fleetdesk.utils.parts_search import build_parts_query, filter_parts
from fleetdesk.utils.permissions import route_required
from fleetdesk.utils.validation import check_service_mileage, check_fuel_level
from . import maintenance_bp

logger = logging.getLogger(__name__)

# roles that may be the responsible mechanic of a service note
MECHANIC_ROLES = ("Mechanic", "Admin")


# -----------------------------
# lookups
# -----------------------------

def _mechanics(db) -> list[dict]:
    return list(db.employees.find({"role": {"$in": list(MECHANIC_ROLES)}, "active": {"$ne": False}}).sort([("name", 1)]))


def _maintenance_type_names(db) -> list[str]:
    names = []
    for t in db.maintenance_types.find({}).sort([("name", 1)]):
        name = (t.get("name") or "").strip()
        if name and name not in names:
            names.append(name)
    return names


def _serviceable_vehicles(db, include_id=None) -> list[dict]:
    query = {"status": {"$in": SERVICEABLE_VEHICLE_STATUSES}}
    if include_id:
        query = {"$or": [query, {"_id": include_id}]}
    return list(db.vehicles.find(query).sort([("plate", 1)]))


def _vehicle_mileage(vehicle: dict | None) -> int:
    if not vehicle:
        return 0
    return int(vehicle.get("total_mileage") or vehicle.get("mileage") or 0)


def _load_note(db, note_id: str) -> dict | None:
    nid = oid(note_id)
    return db.service_notes.find_one({"_id": nid}) if nid else None


def _used_parts(db, note_id) -> list[dict]:
    rows = list(db.service_order_parts.find({"service_note_id": note_id}).sort([("created_at", 1)]))
    part_ids = [r["part_id"] for r in rows if r.get("part_id")]
    parts = {p["_id"]: p for p in db.parts.find({"_id": {"$in": part_ids}})} if part_ids else {}
    for r in rows:
        p = parts.get(r.get("part_id")) or {}
        r["sku"] = p.get("sku") or "N/A"
        r["name"] = p.get("name") or "Part not found"
        if r.get("total_cost") is None:
            r["total_cost"] = float(r.get("quantity_used") or 0) * float(r.get("unit_cost_at_time") or 0)
    return rows


def _active_checkin(db, note_id) -> dict | None:
    return db.maintenance_checkins.find_one({"service_note_id": note_id, "checkout_at": None})


def format_duration(start: datetime, now: datetime | None = None) -> str:
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    diff = (now or utcnow()) - start
    total_minutes = max(int(diff.total_seconds() // 60), 0)
    return f"{total_minutes // 60}h {total_minutes % 60}m"


def is_checkin_overdue(checkin: dict | None, now: datetime | None = None) -> bool:
    if not checkin or not checkin.get("checkin_at"):
        return False
    start = checkin["checkin_at"]
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return ((now or utcnow()) - start).total_seconds() > CHECKIN_OVERDUE_HOURS * 3600


# -----------------------------
# form
# -----------------------------

def _form_state(form, note: dict | None = None) -> dict:
    if form is None:
        note = note or {}
        return {
            "vehicle_id": str(note.get("vehicle_id") or ""),
            "maintenance_type": note.get("maintenance_type") or "",
            "start_date": note.get("start_date") or today_iso(),
            "end_date": note.get("end_date") or "",
            "employee_id": str(note.get("employee_id") or ""),
            "priority": note.get("priority") or SERVICE_NOTE_DEFAULT_PRIORITY,
            "mileage": "" if note.get("mileage") is None else str(note["mileage"]),
            "description": note.get("description") or "",
            "observations": note.get("observations") or "",
            "status": note.get("status") or SERVICE_NOTE_DEFAULT_STATUS,
            "parts_cart": "[]",
        }

    return {
        "vehicle_id": clean(form.get("vehicle_id")),
        "maintenance_type": clean(form.get("maintenance_type")),
        "start_date": clean(form.get("start_date")) or today_iso(),
        "end_date": clean(form.get("end_date")),
        "employee_id": clean(form.get("employee_id")),
        "priority": clean(form.get("priority")) or SERVICE_NOTE_DEFAULT_PRIORITY,
        "mileage": clean(form.get("mileage")),
        "description": clean(form.get("description")),
        "observations": clean(form.get("observations")),
        "status": clean(form.get("status")) or SERVICE_NOTE_DEFAULT_STATUS,
        "parts_cart": form.get("parts_cart") or "[]",
    }


def _render_form(db, state: dict, note: dict | None = None, status: int = 200):
    vehicle_oid = oid(state.get("vehicle_id"))
    vehicle = db.vehicles.find_one({"_id": vehicle_oid}) if vehicle_oid else None

    cart = parse_cart(state.get("parts_cart"))
    cart_lines = []
    if cart:
        parts_by_id = {str(p["_id"]): p for p in db.parts.find({"_id": {"$in": [c["part_id"] for c in cart]}})}
        cart_lines, _ = price_cart(cart, parts_by_id)

    return render_internal_page(
        "maintenance/form.html",
        active_page="maintenance",
        form=state,
        note=note,
        vehicles=_serviceable_vehicles(db, include_id=(note or {}).get("vehicle_id")),
        maintenance_types=_maintenance_type_names(db),
        mechanics=_mechanics(db),
        priorities=SERVICE_NOTE_PRIORITIES,
        statuses=SERVICE_NOTE_STATUSES,
        current_vehicle_mileage=_vehicle_mileage(vehicle),
        cart_lines=cart_lines,
        used_parts=_used_parts(db, note["_id"]) if note else [],
    ), status


def _validate(db, state: dict, note: dict | None = None):
    """Returns (fields, cart, error)."""
    if not state["vehicle_id"]:
        return None, None, "Please select a vehicle before saving the service order."

    vehicle_oid = oid(state["vehicle_id"])
    vehicle = db.vehicles.find_one({"_id": vehicle_oid}) if vehicle_oid else None
    if not vehicle:
        return None, None, "Vehicle not found."

    keeps_vehicle = note is not None and note.get("vehicle_id") == vehicle["_id"]
    if not keeps_vehicle and vehicle.get("status") not in SERVICEABLE_VEHICLE_STATUSES:
        return None, None, "Only vehicles in the yard or available can receive a service order."

    if not state["maintenance_type"]:
        return None, None, "Please select a maintenance type."

    if not state["description"]:
        return None, None, "Please provide a description for the service order."

    mechanic_oid = oid(state["employee_id"])
    mechanic = db.employees.find_one({"_id": mechanic_oid, "active": {"$ne": False}}) if mechanic_oid else None
    if not mechanic or mechanic.get("role") not in MECHANIC_ROLES:
        return None, None, "Please select the responsible mechanic."

    if state["priority"] not in SERVICE_NOTE_PRIORITIES:
        return None, None, "Invalid priority."
    if state["status"] not in SERVICE_NOTE_STATUSES:
        return None, None, "Invalid status."

    start_date = parse_iso_date(state["start_date"])
    if not start_date:
        return None, None, "Invalid start date."

    end_date = None
    if state["end_date"]:
        end_date = parse_iso_date(state["end_date"])
        if not end_date:
            return None, None, "Invalid end date."
        if end_date < start_date:
            return None, None, "End date cannot be before the start date."

    mileage = to_int(state["mileage"])
    if state["mileage"] and mileage is None:
        return None, None, "Invalid mileage."
    if mileage is not None and mileage < 0:
        return None, None, "Mileage cannot be negative."
    err = check_service_mileage(mileage, _vehicle_mileage(vehicle))
    if err:
        return None, None, err

    cart = parse_cart(state["parts_cart"])
    if cart:
        parts_by_id = {str(p["_id"]): p for p in db.parts.find({"_id": {"$in": [c["part_id"] for c in cart]}})}
        _, errors = price_cart(cart, parts_by_id)
        if errors:
            return None, None, " ".join(errors)

    fields = {
        "vehicle_id": vehicle["_id"],
        "maintenance_type": state["maintenance_type"],
        "start_date": start_date,
        "end_date": end_date,
        "mechanic": mechanic.get("name") or "",
        "employee_id": mechanic["_id"],
        "priority": state["priority"],
        "mileage": mileage or None,
        "description": state["description"],
        "observations": state["observations"] or None,
        "status": state["status"],
    }
    return fields, cart, None


def _consume(db, note: dict, cart: list[dict]) -> bool:
    if not cart:
        return True
    result = procedures.consume_service_parts(db, note, cart, user_id=g.user["_id"])
    flash(result["message"], "success" if result["success"] else "error")
    return result["success"]


# -----------------------------
# routes
# -----------------------------

@maintenance_bp.get("/")
@route_required
def service_notes_page():
    db = get_db()
    page, per_page = get_pagination_params(request.args)

    query = {}
    status = clean(request.args.get("status"))
    if status in SERVICE_NOTE_STATUSES:
        query["status"] = status

    notes, pagination = paginate_find(db.service_notes, query, [("start_date", -1), ("created_at", -1)], page, per_page)

    vehicle_ids = list({n["vehicle_id"] for n in notes if n.get("vehicle_id")})
    vehicles = {v["_id"]: v for v in db.vehicles.find({"_id": {"$in": vehicle_ids}})} if vehicle_ids else {}
    note_ids = [n["_id"] for n in notes]
    open_checkins = {
        c["service_note_id"] for c in db.maintenance_checkins.find({"service_note_id": {"$in": note_ids}, "checkout_at": None})
    } if note_ids else set()

    for n in notes:
        v = vehicles.get(n.get("vehicle_id")) or {}
        n["vehicle_label"] = f"{v.get('plate', '')} - {v.get('model', '')}".strip(" -") or "(removed)"
        n["in_progress"] = n["_id"] in open_checkins

    return render_internal_page(
        "maintenance/list.html",
        active_page="maintenance",
        notes=notes,
        pagination=pagination,
        statuses=SERVICE_NOTE_STATUSES,
        selected_status=status,
    )


@maintenance_bp.get("/new")
@route_required
def service_note_new_page():
    db = get_db()
    state = _form_state(None)

    # the logged-in mechanic/admin is the default responsible
    if g.user.get("role") in MECHANIC_ROLES:
        state["employee_id"] = str(g.user["_id"])

    vehicle_id = clean(request.args.get("vehicle_id"))
    if vehicle_id:
        state["vehicle_id"] = vehicle_id
        vehicle = db.vehicles.find_one({"_id": oid(vehicle_id)}) if oid(vehicle_id) else None
        if vehicle:
            state["mileage"] = str(_vehicle_mileage(vehicle) or "")

    return _render_form(db, state)


@maintenance_bp.post("/new")
@route_required
def service_note_create():
    db = get_db()
    state = _form_state(request.form)

    fields, cart, err = _validate(db, state)
    if err:
        flash(err, "error")
        return _render_form(db, state, status=400)

    now = utcnow()
    note = {
        **fields,
        "created_at": now,
        "updated_at": now,
        "created_by": g.user["_id"],
    }

    try:
        note["_id"] = db.service_notes.insert_one(note).inserted_id
    except PyMongoError:
        logger.exception("Service note create failed")
        flash("Error saving service order. Check that all required fields are filled in.", "error")
        return _render_form(db, state, status=500)

    if not _consume(db, note, cart):
        return redirect(url_for("maintenance.service_note_edit_page", note_id=str(note["_id"])))

    flash("Service order created.", "success")
    return redirect(url_for("maintenance.service_note_detail", note_id=str(note["_id"])))


@maintenance_bp.get("/<note_id>")
@route_required
def service_note_detail(note_id: str):
    db = get_db()
    note = _load_note(db, note_id)
    if not note:
        flash("Service order not found.", "error")
        return redirect(url_for("maintenance.service_notes_page"))

    vehicle = db.vehicles.find_one({"_id": note.get("vehicle_id")}) if note.get("vehicle_id") else None
    active = _active_checkin(db, note["_id"])
    history = list(db.maintenance_checkins.find({"service_note_id": note["_id"]}).sort([("checkin_at", -1)]))
    used_parts = _used_parts(db, note["_id"])

    return render_internal_page(
        "maintenance/detail.html",
        active_page="maintenance",
        note=note,
        vehicle=vehicle,
        used_parts=used_parts,
        parts_total=round(sum(float(p.get("total_cost") or 0) for p in used_parts), 2),
        active_checkin=active,
        active_duration=format_duration(active["checkin_at"]) if active else "",
        checkin_overdue=is_checkin_overdue(active),
        checkins=history,
        mechanics=_mechanics(db),
        available_parts=list(db.parts.find({"is_active": {"$ne": False}, "quantity": {"$gt": 0}}).sort([("name", 1)])),
    )


@maintenance_bp.get("/<note_id>/edit")
@route_required
def service_note_edit_page(note_id: str):
    db = get_db()
    note = _load_note(db, note_id)
    if not note:
        flash("Service order not found.", "error")
        return redirect(url_for("maintenance.service_notes_page"))
    return _render_form(db, _form_state(None, note), note=note)


@maintenance_bp.post("/<note_id>/edit")
@route_required
def service_note_update(note_id: str):
    db = get_db()
    note = _load_note(db, note_id)
    if not note:
        flash("Service order not found.", "error")
        return redirect(url_for("maintenance.service_notes_page"))

    state = _form_state(request.form)
    fields, cart, err = _validate(db, state, note=note)
    if err:
        flash(err, "error")
        return _render_form(db, state, note=note, status=400)

    try:
        db.service_notes.update_one(
            {"_id": note["_id"]},
            {"$set": {**fields, "updated_at": utcnow(), "updated_by": g.user["_id"]}},
        )
    except PyMongoError:
        logger.exception("Service note update failed (%s)", note_id)
        flash("Error saving service order.", "error")
        return _render_form(db, state, note=note, status=500)

    note.update(fields)
    if not _consume(db, note, cart):
        return redirect(url_for("maintenance.service_note_edit_page", note_id=note_id))

    flash("Service order updated.", "success")
    return redirect(url_for("maintenance.service_note_detail", note_id=note_id))


@maintenance_bp.post("/<note_id>/parts")
@route_required
def service_note_add_parts(note_id: str):
    db = get_db()
    note = _load_note(db, note_id)
    if not note:
        flash("Service order not found.", "error")
        return redirect(url_for("maintenance.service_notes_page"))

    # JSON cart from the picker, or a single part/quantity pair
    cart = parse_cart(request.form.get("parts_cart"))
    part_oid = oid(request.form.get("part_id"))
    if not cart and part_oid:
        cart = add_to_cart(cart, part_oid, to_int(request.form.get("quantity"), 1))
    if not cart:
        flash("Add at least one part.", "error")
        return redirect(url_for("maintenance.service_note_detail", note_id=note_id))

    try:
        _consume(db, note, cart)
    except PyMongoError:
        logger.exception("Saving parts failed (%s)", note_id)
        flash("Error saving parts.", "error")

    return redirect(url_for("maintenance.service_note_detail", note_id=note_id))


# -----------------------------
# check-in / check-out
# -----------------------------

@maintenance_bp.post("/<note_id>/checkin")
@route_required
def service_note_checkin(note_id: str):
    db = get_db()
    note = _load_note(db, note_id)
    if not note:
        flash("Service order not found.", "error")
        return redirect(url_for("maintenance.service_notes_page"))

    if _active_checkin(db, note["_id"]):
        flash("This service order already has an active check-in.", "error")
        return redirect(url_for("maintenance.service_note_detail", note_id=note_id))

    mechanic_oid = oid(request.form.get("mechanic_id"))
    mechanic = db.employees.find_one({"_id": mechanic_oid, "active": {"$ne": False}}) if mechanic_oid else None
    if not mechanic or mechanic.get("role") not in MECHANIC_ROLES:
        flash("Select the mechanic.", "error")
        return redirect(url_for("maintenance.service_note_detail", note_id=note_id))

    try:
        db.maintenance_checkins.insert_one({
            "service_note_id": note["_id"],
            "mechanic_id": mechanic["_id"],
            "mechanic_name": mechanic.get("name") or "",
            "checkin_at": utcnow(),
            "checkout_at": None,
            "is_open": True,
            "notes": clean(request.form.get("notes")) or None,
            "signature_url": None,
            "mileage": None,
            "fuel_level": None,
            "created_by": g.user["_id"],
        })
    except DuplicateKeyError:
        flash("This service order already has an active check-in.", "error")
        return redirect(url_for("maintenance.service_note_detail", note_id=note_id))
    except PyMongoError:
        logger.exception("Check-in failed (%s)", note_id)
        flash("Error processing check-in.", "error")
        return redirect(url_for("maintenance.service_note_detail", note_id=note_id))

    flash("Check-in done.", "success")
    return redirect(url_for("maintenance.service_note_detail", note_id=note_id))


@maintenance_bp.post("/<note_id>/checkout")
@route_required
def service_note_checkout(note_id: str):
    db = get_db()
    note = _load_note(db, note_id)
    if not note:
        flash("Service order not found.", "error")
        return redirect(url_for("maintenance.service_notes_page"))

    active = _active_checkin(db, note["_id"])
    if not active:
        flash("There is no active check-in for this service order.", "error")
        return redirect(url_for("maintenance.service_note_detail", note_id=note_id))

    mileage = to_int(request.form.get("mileage"))
    fuel_level = to_float(request.form.get("fuel_level"))

    if clean(request.form.get("mileage")) and mileage is None:
        flash("Invalid mileage.", "error")
        return redirect(url_for("maintenance.service_note_detail", note_id=note_id))
    if clean(request.form.get("fuel_level")) and fuel_level is None:
        flash("Invalid fuel level.", "error")
        return redirect(url_for("maintenance.service_note_detail", note_id=note_id))

    if mileage is not None and mileage < 0:
        flash("Mileage cannot be negative.", "error")
        return redirect(url_for("maintenance.service_note_detail", note_id=note_id))

    err = check_fuel_level(fuel_level)
    if err:
        flash(err, "error")
        return redirect(url_for("maintenance.service_note_detail", note_id=note_id))

    update = {
        "checkout_at": utcnow(),
        "is_open": False,
        "signature_url": clean(request.form.get("signature_url")) or active.get("signature_url"),
        "mileage": mileage or None,
        "fuel_level": fuel_level or None,
        "checked_out_by": g.user["_id"],
    }
    notes = clean(request.form.get("notes"))
    if notes:
        update["notes"] = notes

    try:
        db.maintenance_checkins.update_one({"_id": active["_id"]}, {"$set": update})
        procedures.record_vehicle_mileage(db, note.get("vehicle_id"), mileage)
    except PyMongoError:
        logger.exception("Check-out failed (%s)", note_id)
        flash("Error processing check-out.", "error")
        return redirect(url_for("maintenance.service_note_detail", note_id=note_id))

    flash("Check-out done.", "success")
    return redirect(url_for("maintenance.service_note_detail", note_id=note_id))


# -----------------------------
# parts cart API
# -----------------------------

@maintenance_bp.get("/api/parts")
@route_required
def api_parts_search():
    db = get_db()
    q = request.args.get("q")
    query = {"is_active": {"$ne": False}, "quantity": {"$gt": 0}}
    query.update(build_parts_query(q))

    # trigrams can match across sku and name; keep only real substring hits
    parts = filter_parts(list(db.parts.find(query).sort([("name", 1)]).limit(50)), q)
    return jsonify({
        "ok": True,
        "parts": [
            {
                "id": str(p["_id"]),
                "sku": p.get("sku") or "",
                "name": p.get("name") or "",
                "quantity": int(p.get("quantity") or 0),
                "unit_cost": float(p.get("unit_cost") or 0),
            }
            for p in parts
        ],
    })


@maintenance_bp.post("/api/cart")
@route_required
def api_price_cart():
    db = get_db()
    payload = request.get_json(silent=True) or {}
    cart = parse_cart(payload.get("cart"))

    parts_by_id = {}
    if cart:
        parts_by_id = {str(p["_id"]): p for p in db.parts.find({"_id": {"$in": [c["part_id"] for c in cart]}})}
    lines, errors = price_cart(cart, parts_by_id)

    return jsonify({
        "ok": not errors,
        "errors": errors,
        "lines": json.loads(json.dumps(lines, default=str)),
        "total": round(sum(line["total_cost"] for line in lines), 2),
    }), (200 if not errors else 400)
