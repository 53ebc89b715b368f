from __future__ import annotations

import logging

from flask import request, redirect, url_for, flash, g
from pymongo.errors import PyMongoError

from fleetdesk.constants.fleet import (
    PURCHASE_ORDER_DEFAULT_STATUS,
    PURCHASE_ORDER_RECEIVED,
    PURCHASE_ORDER_STATUSES,
)
from fleetdesk.extensions import get_db
from fleetdesk.services import procedures
from fleetdesk.utils.forms import clean, oid, parse_iso_date, to_float, to_int, today_iso, utcnow
from fleetdesk.utils.layout import render_internal_page
from fleetdesk.utils.pagination import get_pagination_params, paginate_find
from fleetdesk.utils.permissions import employee_has_module, route_required
from . import purchase_orders_bp

logger = logging.getLogger(__name__)


def _purchase_responsibles(db) -> list[dict]:
    """Active employees allowed to answer for a purchase order."""
    rows = db.employees.find({"active": {"$ne": False}}).sort([("name", 1)])
    return [e for e in rows if e.get("role") in ("Admin", "Manager") or employee_has_module(e, "purchases")]


def _active_suppliers(db) -> list[dict]:
    return list(db.suppliers.find({"is_active": {"$ne": False}}).sort([("name", 1)]))


def _active_parts(db) -> list[dict]:
    return list(db.parts.find({"is_active": {"$ne": False}}).sort([("name", 1)]))


def _load_order(db, order_id: str) -> dict | None:
    poid = oid(order_id)
    return db.purchase_orders.find_one({"_id": poid}) if poid else None


def _order_items(db, order_id) -> list[dict]:
    return list(db.purchase_order_items.find({"purchase_order_id": order_id}).sort([("_id", 1)]))


def _items_from_form(form) -> list[dict]:
    part_ids = form.getlist("item_part_id")
    descriptions = form.getlist("item_description")
    quantities = form.getlist("item_quantity")
    prices = form.getlist("item_unit_price")

    size = max(len(part_ids), len(descriptions), len(quantities), len(prices))
    items = []
    for i in range(size):
        row = {
            "part_id": clean(part_ids[i]) if i < len(part_ids) else "",
            "description": clean(descriptions[i]) if i < len(descriptions) else "",
            "quantity": clean(quantities[i]) if i < len(quantities) else "",
            "unit_price": clean(prices[i]) if i < len(prices) else "",
        }
        # skip blank trailing rows
        if any(row.values()):
            items.append(row)
    return items


def _form_state(form, order: dict | None = None, items: list[dict] | None = None) -> dict:
    if form is None:
        order = order or {}
        return {
            "supplier_id": str(order.get("supplier_id") or ""),
            "order_number": order.get("order_number") or "",
            "order_date": order.get("order_date") or today_iso(),
            "status": order.get("status") or PURCHASE_ORDER_DEFAULT_STATUS,
            "created_by_employee_id": str(order.get("created_by_employee_id") or ""),
            "notes": order.get("notes") or "",
            "items": [
                {
                    "part_id": str(it.get("part_id") or ""),
                    "description": it.get("description") or "",
                    "quantity": str(it.get("quantity") or ""),
                    "unit_price": str(it.get("unit_price") or ""),
                }
                for it in (items or [])
            ],
        }

    return {
        "supplier_id": clean(form.get("supplier_id")),
        "order_number": clean(form.get("order_number")),
        "order_date": clean(form.get("order_date")) or today_iso(),
        "status": clean(form.get("status")) or PURCHASE_ORDER_DEFAULT_STATUS,
        "created_by_employee_id": clean(form.get("created_by_employee_id")),
        "notes": clean(form.get("notes")),
        "items": _items_from_form(form),
    }


def _render_form(db, state: dict, order: dict | None = None, status: int = 200):
    return render_internal_page(
        "purchase_orders/form.html",
        active_page="purchases",
        form=state,
        order=order,
        suppliers=_active_suppliers(db),
        parts=_active_parts(db),
        employees=_purchase_responsibles(db),
        statuses=PURCHASE_ORDER_STATUSES,
    ), status


def validate_items(db, raw_items: list[dict]):
    """
    Returns (items, total, error). A chosen part fills in a missing
    description or unit price from the stock record.
    """
    if not raw_items:
        return None, 0.0, "Add at least one item to the order before saving."

    items = []
    for n, raw in enumerate(raw_items, start=1):
        part = None
        if raw.get("part_id"):
            part_oid = oid(raw["part_id"])
            part = db.parts.find_one({"_id": part_oid}) if part_oid else None
            if not part:
                return None, 0.0, f"Item {n}: part not found."

        description = raw.get("description") or (part or {}).get("name") or ""
        quantity = to_int(raw.get("quantity"))
        unit_price = to_float(raw.get("unit_price"))
        if unit_price is None and part:
            unit_price = float(part.get("unit_cost") or 0)

        if not description or not quantity or quantity <= 0 or not unit_price or unit_price <= 0:
            return None, 0.0, f"Item {n}: fill in description, quantity and unit price correctly."

        items.append({
            "part_id": part["_id"] if part else None,
            "description": description,
            "quantity": quantity,
            "unit_price": round(float(unit_price), 2),
            "line_total": round(quantity * float(unit_price), 2),
        })

    total = round(sum(it["quantity"] * it["unit_price"] for it in items), 2)
    return items, total, None


def _validate(db, state: dict):
    """Returns (fields, items, supplier, error)."""
    supplier_oid = oid(state["supplier_id"])
    supplier = db.suppliers.find_one({"_id": supplier_oid}) if supplier_oid else None
    if not supplier:
        return None, None, None, "Please select a supplier."

    order_date = parse_iso_date(state["order_date"])
    if not order_date:
        return None, None, None, "Invalid order date."

    if state["status"] not in PURCHASE_ORDER_STATUSES:
        return None, None, None, "Invalid status."

    items, total, err = validate_items(db, state["items"])
    if err:
        return None, None, None, err

    responsible_oid = oid(state["created_by_employee_id"])
    responsible = next((e for e in _purchase_responsibles(db) if e["_id"] == responsible_oid), None)
    if not responsible:
        return None, None, None, "Please select the employee responsible for the purchase order."

    fields = {
        "supplier_id": supplier["_id"],
        "order_number": state["order_number"] or None,
        "order_date": order_date,
        "total_amount": total,
        "status": state["status"],
        "created_by_employee_id": responsible["_id"],
        "notes": state["notes"] or None,
    }
    return fields, items, supplier, None


def _insert_items(db, order_id, items: list[dict]) -> None:
    if items:
        db.purchase_order_items.insert_many([{**it, "purchase_order_id": order_id} for it in items])


def _after_status(db, order_id, status: str) -> None:
    if status != PURCHASE_ORDER_RECEIVED:
        return
    result = procedures.apply_received_stock(db, order_id)
    if result.get("parts_updated"):
        flash(result["message"], "info")


@purchase_orders_bp.get("/")
@route_required
def purchase_orders_page():
    db = get_db()
    page, per_page = get_pagination_params(request.args)

    query = {}
    status = clean(request.args.get("status"))
    if status in PURCHASE_ORDER_STATUSES:
        query["status"] = status

    orders, pagination = paginate_find(db.purchase_orders, query, [("order_date", -1), ("created_at", -1)], page, per_page)

    supplier_ids = list({o["supplier_id"] for o in orders if o.get("supplier_id")})
    suppliers = {s["_id"]: s for s in db.suppliers.find({"_id": {"$in": supplier_ids}})} if supplier_ids else {}
    for o in orders:
        o["supplier_name"] = (suppliers.get(o.get("supplier_id")) or {}).get("name") or ""

    return render_internal_page(
        "purchase_orders/list.html",
        active_page="purchases",
        orders=orders,
        pagination=pagination,
        statuses=PURCHASE_ORDER_STATUSES,
        selected_status=status,
    )


@purchase_orders_bp.get("/new")
@route_required
def purchase_order_new_page():
    db = get_db()
    state = _form_state(None)

    if any(e["_id"] == g.user["_id"] for e in _purchase_responsibles(db)):
        state["created_by_employee_id"] = str(g.user["_id"])

    return _render_form(db, state)


@purchase_orders_bp.post("/new")
@route_required
def purchase_order_create():
    db = get_db()
    state = _form_state(request.form)

    fields, items, supplier, err = _validate(db, state)
    if err:
        flash(err, "error")
        return _render_form(db, state, status=400)

    now = utcnow()
    order = {
        **fields,
        "stock_applied": False,
        "created_at": now,
        "updated_at": now,
        "created_by": g.user["_id"],
    }

    try:
        order["_id"] = db.purchase_orders.insert_one(order).inserted_id
        _insert_items(db, order["_id"], items)
        procedures.generate_purchase_cost(db, order, supplier.get("name") or "", user_id=g.user["_id"])
        _after_status(db, order["_id"], order["status"])
    except PyMongoError:
        logger.exception("Purchase order create failed")
        flash("Error saving purchase order.", "error")
        return _render_form(db, state, status=500)

    logger.info("Purchase order %s created (total=%.2f)", order["_id"], order["total_amount"])
    flash("Purchase order created.", "success")
    return redirect(url_for("purchase_orders.purchase_order_detail", order_id=str(order["_id"])))


@purchase_orders_bp.get("/<order_id>")
@route_required
def purchase_order_detail(order_id: str):
    db = get_db()
    order = _load_order(db, order_id)
    if not order:
        flash("Purchase order not found.", "error")
        return redirect(url_for("purchase_orders.purchase_orders_page"))

    supplier = db.suppliers.find_one({"_id": order.get("supplier_id")}) if order.get("supplier_id") else None
    responsible = None
    if order.get("created_by_employee_id"):
        responsible = db.employees.find_one({"_id": order["created_by_employee_id"]})

    items = _order_items(db, order["_id"])
    part_ids = [it["part_id"] for it in items if it.get("part_id")]
    parts = {p["_id"]: p for p in db.parts.find({"_id": {"$in": part_ids}})} if part_ids else {}
    for it in items:
        it["sku"] = (parts.get(it.get("part_id")) or {}).get("sku") or ""

    return render_internal_page(
        "purchase_orders/detail.html",
        active_page="purchases",
        order=order,
        supplier=supplier,
        responsible=responsible,
        items=items,
        statuses=PURCHASE_ORDER_STATUSES,
    )


@purchase_orders_bp.get("/<order_id>/edit")
@route_required
def purchase_order_edit_page(order_id: str):
    db = get_db()
    order = _load_order(db, order_id)
    if not order:
        flash("Purchase order not found.", "error")
        return redirect(url_for("purchase_orders.purchase_orders_page"))

    if order.get("stock_applied"):
        flash("Received orders can no longer be edited.", "error")
        return redirect(url_for("purchase_orders.purchase_order_detail", order_id=order_id))

    return _render_form(db, _form_state(None, order, _order_items(db, order["_id"])), order=order)


@purchase_orders_bp.post("/<order_id>/edit")
@route_required
def purchase_order_update(order_id: str):
    db = get_db()
    order = _load_order(db, order_id)
    if not order:
        flash("Purchase order not found.", "error")
        return redirect(url_for("purchase_orders.purchase_orders_page"))

    if order.get("stock_applied"):
        flash("Received orders can no longer be edited.", "error")
        return redirect(url_for("purchase_orders.purchase_order_detail", order_id=order_id))

    state = _form_state(request.form)
    fields, items, _, err = _validate(db, state)
    if err:
        flash(err, "error")
        return _render_form(db, state, order=order, status=400)

    try:
        db.purchase_orders.update_one(
            {"_id": order["_id"]},
            {"$set": {**fields, "updated_at": utcnow(), "updated_by": g.user["_id"]}},
        )
        # items are replaced as a whole
        db.purchase_order_items.delete_many({"purchase_order_id": order["_id"]})
        _insert_items(db, order["_id"], items)
        procedures.sync_purchase_cost(db, {**order, **fields})
        _after_status(db, order["_id"], fields["status"])
    except PyMongoError:
        logger.exception("Purchase order update failed (%s)", order_id)
        flash("Error saving purchase order.", "error")
        return _render_form(db, state, order=order, status=500)

    flash("Purchase order updated.", "success")
    return redirect(url_for("purchase_orders.purchase_order_detail", order_id=order_id))


@purchase_orders_bp.post("/<order_id>/status")
@route_required
def purchase_order_status(order_id: str):
    db = get_db()
    order = _load_order(db, order_id)
    if not order:
        flash("Purchase order not found.", "error")
        return redirect(url_for("purchase_orders.purchase_orders_page"))

    status = clean(request.form.get("status"))
    if status not in PURCHASE_ORDER_STATUSES:
        flash("Invalid status.", "error")
        return redirect(url_for("purchase_orders.purchase_order_detail", order_id=order_id))

    if order.get("stock_applied") and status != PURCHASE_ORDER_RECEIVED:
        flash("Stock was already added for this order; its status cannot change.", "error")
        return redirect(url_for("purchase_orders.purchase_order_detail", order_id=order_id))

    try:
        db.purchase_orders.update_one(
            {"_id": order["_id"]},
            {"$set": {"status": status, "updated_at": utcnow(), "updated_by": g.user["_id"]}},
        )
        _after_status(db, order["_id"], status)
    except PyMongoError:
        logger.exception("Purchase order status change failed (%s)", order_id)
        flash("Error updating status.", "error")
        return redirect(url_for("purchase_orders.purchase_order_detail", order_id=order_id))

    flash(f"Status changed to {status}.", "success")
    return redirect(url_for("purchase_orders.purchase_order_detail", order_id=order_id))
