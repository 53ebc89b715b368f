"""
Business rules that run next to the data: stock deduction on parts usage,
cost-entry generation, purchase receipt, and the vehicle deletion pair
(impact analysis + safe delete).

Handlers call these the same way: pass the db, get back a plain dict,
flash its message.
"""
from __future__ import annotations

import logging

from fleetdesk.constants.fleet import (
    CONTRACT_ACTIVE,
    CONTRACT_DEACTIVATED,
    COST_ORIGIN_PURCHASE,
    COST_ORIGIN_SERVICE,
    PURCHASE_ORDER_RECEIVED,
)
from fleetdesk.services.parts_cart import price_cart
from fleetdesk.utils.forms import oid, today_iso, utcnow

logger = logging.getLogger(__name__)


# -----------------------------
# contracts
# -----------------------------

def active_contract_query(vehicle_id=None, today: str | None = None) -> dict:
    day = today or today_iso()
    q = {
        "status": CONTRACT_ACTIVE,
        "start_date": {"$lte": day},
        "end_date": {"$gte": day},
    }
    if vehicle_id is not None:
        q["vehicle_id"] = vehicle_id
    return q


def find_active_contract(db, vehicle_id, today: str | None = None) -> dict | None:
    return db.contracts.find_one(active_contract_query(vehicle_id, today))


def vehicle_ids_with_active_contract(db, today: str | None = None) -> set:
    return {c["vehicle_id"] for c in db.contracts.find(active_contract_query(None, today), {"vehicle_id": 1})}


def actual_vehicle_status(vehicle: dict, contracted_ids: set) -> str:
    """Status shown in lists: a running contract wins over the stored value."""
    if vehicle.get("_id") in contracted_ids:
        return "In Contract"
    if vehicle.get("status") == "In Use":
        return "Available"
    return vehicle.get("status") or ""


# -----------------------------
# vehicle deletion
# -----------------------------

def get_vehicle_deletion_impact(db, vehicle_id, today: str | None = None) -> dict:
    vid = oid(vehicle_id)
    vehicle = db.vehicles.find_one({"_id": vid}) if vid else None

    if not vehicle:
        return {
            "vehicle_exists": False,
            "vehicle_plate": "",
            "vehicle_model": "",
            "has_active_contract": False,
            "contract_info": None,
            "impact_summary": {
                "active_driver_assignments": 0,
                "total_inspections": 0,
                "total_fuel_records": 0,
                "total_fines": 0,
            },
            "warning_message": "Vehicle not found.",
        }

    contract = find_active_contract(db, vid, today)
    contract_info = None
    if contract:
        contract_info = {
            "contract_id": str(contract["_id"]),
            "contract_number": contract.get("contract_number") or "",
            "customer_name": contract.get("customer_name") or "",
            "start_date": contract.get("start_date") or "",
            "end_date": contract.get("end_date") or "",
            "status": contract.get("status") or "",
        }

    summary = {
        "active_driver_assignments": db.driver_assignments.count_documents({"vehicle_id": vid, "active": True}),
        "total_inspections": db.inspections.count_documents({"vehicle_id": vid}),
        "total_fuel_records": db.fuel_records.count_documents({"vehicle_id": vid}),
        "total_fines": db.fines.count_documents({"vehicle_id": vid}),
    }

    if contract_info:
        warning = (
            f"Vehicle {vehicle.get('plate')} has active contract {contract_info['contract_number']} "
            f"({contract_info['customer_name']}). The contract will be deactivated."
        )
    elif any(summary.values()):
        warning = f"Vehicle {vehicle.get('plate')} has related records that will be removed."
    else:
        warning = f"Vehicle {vehicle.get('plate')} has no related records."

    return {
        "vehicle_exists": True,
        "vehicle_plate": vehicle.get("plate") or "",
        "vehicle_model": vehicle.get("model") or "",
        "has_active_contract": contract_info is not None,
        "contract_info": contract_info,
        "impact_summary": summary,
        "warning_message": warning,
    }


def safe_delete_vehicle(db, vehicle_id, today: str | None = None) -> dict:
    vid = oid(vehicle_id)
    vehicle = db.vehicles.find_one({"_id": vid}) if vid else None
    if not vehicle:
        return {"success": False, "message": "Vehicle not found."}

    now = utcnow()
    deactivated = db.contracts.update_many(
        active_contract_query(vid, today),
        {"$set": {"status": CONTRACT_DEACTIVATED, "updated_at": now, "deactivated_reason": "vehicle_deleted"}},
    ).modified_count

    db.driver_assignments.delete_many({"vehicle_id": vid})
    db.inspections.delete_many({"vehicle_id": vid})
    db.fuel_records.delete_many({"vehicle_id": vid})
    db.fines.delete_many({"vehicle_id": vid})
    db.contracts.update_many({"vehicle_id": vid}, {"$set": {"vehicle_id": None}})
    db.vehicles.delete_one({"_id": vid})

    logger.info("Vehicle %s deleted (%s contract(s) deactivated)", vehicle.get("plate"), deactivated)

    message = f"Vehicle {vehicle.get('plate')} deleted."
    if deactivated:
        message += f" {deactivated} active contract(s) deactivated."
    return {"success": True, "message": message, "contracts_deactivated": deactivated}


# -----------------------------
# parts usage
# -----------------------------

def _restore_stock(db, consumed: list[tuple]) -> None:
    for part_id, qty in consumed:
        db.parts.update_one({"_id": part_id}, {"$inc": {"quantity": qty}})


def consume_service_parts(db, service_note: dict, cart: list[dict], user_id=None) -> dict:
    """
    For each cart line: deduct stock, store a service_order_parts row with the
    unit cost at the time, and generate a cost entry. All or nothing.
    """
    if not cart:
        return {"success": True, "message": "No parts to save.", "lines": []}

    part_ids = [line["part_id"] for line in cart]
    parts_by_id = {str(p["_id"]): p for p in db.parts.find({"_id": {"$in": part_ids}})}

    lines, errors = price_cart(cart, parts_by_id)
    if errors:
        return {"success": False, "message": " ".join(errors), "lines": []}

    consumed = []
    for line in lines:
        res = db.parts.update_one(
            {"_id": line["part_id"], "quantity": {"$gte": line["quantity"]}},
            {"$inc": {"quantity": -line["quantity"]}},
        )
        if res.modified_count != 1:
            _restore_stock(db, consumed)
            return {"success": False, "message": f"Insufficient stock for {line['name']}.", "lines": []}
        consumed.append((line["part_id"], line["quantity"]))

    now = utcnow()
    cost_date = service_note.get("start_date") or today_iso()
    for line in lines:
        db.service_order_parts.insert_one({
            "service_note_id": service_note["_id"],
            "part_id": line["part_id"],
            "quantity_used": line["quantity"],
            "unit_cost_at_time": line["unit_cost"],
            "total_cost": line["total_cost"],
            "created_at": now,
            "created_by": user_id,
        })
        db.costs.insert_one({
            "category": "Parts",
            "vehicle_id": service_note.get("vehicle_id"),
            "description": f"{line['name']} ({line['sku']}) x{line['quantity']}",
            "amount": line["total_cost"],
            "cost_date": cost_date,
            "origin": COST_ORIGIN_SERVICE,
            "source_reference": service_note["_id"],
            "created_at": now,
            "created_by": user_id,
        })

    logger.info("Service note %s consumed %d part line(s)", service_note["_id"], len(lines))
    return {"success": True, "message": f"{len(lines)} part(s) deducted from stock.", "lines": lines}


# -----------------------------
# purchases
# -----------------------------

def generate_purchase_cost(db, order: dict, supplier_name: str = "", user_id=None) -> None:
    label = order.get("order_number") or str(order["_id"])
    db.costs.insert_one({
        "category": "Purchases",
        "vehicle_id": None,
        "description": f"Purchase order {label}" + (f" - {supplier_name}" if supplier_name else ""),
        "amount": float(order.get("total_amount") or 0),
        "cost_date": order.get("order_date") or today_iso(),
        "origin": COST_ORIGIN_PURCHASE,
        "source_reference": order["_id"],
        "created_at": utcnow(),
        "created_by": user_id,
    })


def sync_purchase_cost(db, order: dict) -> None:
    db.costs.update_many(
        {"origin": COST_ORIGIN_PURCHASE, "source_reference": order["_id"]},
        {"$set": {
            "amount": float(order.get("total_amount") or 0),
            "cost_date": order.get("order_date") or today_iso(),
            "updated_at": utcnow(),
        }},
    )


def apply_received_stock(db, order_id) -> dict:
    """Adds item quantities to linked parts once per order."""
    order = db.purchase_orders.find_one({"_id": order_id})
    if not order:
        return {"success": False, "message": "Purchase order not found."}
    if order.get("status") != PURCHASE_ORDER_RECEIVED:
        return {"success": False, "message": "Purchase order is not received."}

    claimed = db.purchase_orders.update_one(
        {"_id": order_id, "stock_applied": {"$ne": True}},
        {"$set": {"stock_applied": True, "stock_applied_at": utcnow()}},
    )
    if claimed.modified_count != 1:
        return {"success": True, "message": "Stock already updated for this order.", "parts_updated": 0}

    updated = 0
    for item in db.purchase_order_items.find({"purchase_order_id": order_id}):
        if not item.get("part_id"):
            continue
        res = db.parts.update_one(
            {"_id": item["part_id"]},
            {"$inc": {"quantity": int(item.get("quantity") or 0)}, "$set": {"updated_at": utcnow()}},
        )
        updated += res.modified_count

    logger.info("Purchase order %s received: %d part(s) restocked", order_id, updated)
    return {"success": True, "message": f"Stock updated for {updated} part(s).", "parts_updated": updated}


# -----------------------------
# inspections
# -----------------------------

def record_vehicle_mileage(db, vehicle_id, mileage: int | None) -> bool:
    """Raises the stored odometer when a newer, higher reading comes in."""
    if not vehicle_id or not mileage:
        return False
    vehicle = db.vehicles.find_one({"_id": vehicle_id}, {"mileage": 1, "total_mileage": 1})
    if not vehicle:
        return False
    current = vehicle.get("total_mileage") or vehicle.get("mileage") or 0
    if mileage <= current:
        return False
    db.vehicles.update_one(
        {"_id": vehicle_id},
        {"$set": {"mileage": mileage, "total_mileage": mileage, "updated_at": utcnow()}},
    )
    return True
