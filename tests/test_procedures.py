from bson import ObjectId

from fleetdesk.constants.fleet import COST_ORIGIN_PURCHASE, COST_ORIGIN_SERVICE
from fleetdesk.services import procedures


def test_deletion_impact_for_missing_vehicle(db):
    impact = procedures.get_vehicle_deletion_impact(db, str(ObjectId()))
    assert impact["vehicle_exists"] is False
    assert impact["has_active_contract"] is False
    assert impact["impact_summary"]["total_inspections"] == 0


def test_deletion_impact_counts_related_records(db, make_vehicle, make_contract):
    vehicle = make_vehicle()
    contract = make_contract(vehicle, number="CT-42")
    db.inspections.insert_many([{"vehicle_id": vehicle["_id"]}, {"vehicle_id": vehicle["_id"]}])
    db.fuel_records.insert_one({"vehicle_id": vehicle["_id"]})
    db.fines.insert_one({"vehicle_id": vehicle["_id"]})
    db.driver_assignments.insert_many([
        {"vehicle_id": vehicle["_id"], "active": True},
        {"vehicle_id": vehicle["_id"], "active": False},
    ])

    impact = procedures.get_vehicle_deletion_impact(db, str(vehicle["_id"]))

    assert impact["vehicle_exists"] is True
    assert impact["vehicle_plate"] == "ABC1234"
    assert impact["has_active_contract"] is True
    assert impact["contract_info"]["contract_id"] == str(contract["_id"])
    assert impact["impact_summary"] == {
        "active_driver_assignments": 1,
        "total_inspections": 2,
        "total_fuel_records": 1,
        "total_fines": 1,
    }
    assert "CT-42" in impact["warning_message"]


def test_expired_contract_is_not_active(db, make_vehicle, make_contract):
    vehicle = make_vehicle()
    make_contract(vehicle, start="2000-01-01", end="2000-12-31")
    assert procedures.get_vehicle_deletion_impact(db, vehicle["_id"])["has_active_contract"] is False


def test_safe_delete_vehicle(db, make_vehicle, make_contract):
    vehicle = make_vehicle()
    contract = make_contract(vehicle)
    db.inspections.insert_one({"vehicle_id": vehicle["_id"]})
    db.fines.insert_one({"vehicle_id": vehicle["_id"]})

    result = procedures.safe_delete_vehicle(db, str(vehicle["_id"]))

    assert result["success"] is True
    assert result["contracts_deactivated"] == 1
    assert db.vehicles.count_documents({}) == 0
    assert db.inspections.count_documents({}) == 0
    assert db.fines.count_documents({}) == 0
    stored = db.contracts.find_one({"_id": contract["_id"]})
    assert stored["status"] == "Cancelled"
    assert stored["vehicle_id"] is None


def test_safe_delete_missing_vehicle(db):
    result = procedures.safe_delete_vehicle(db, "bad-id")
    assert result == {"success": False, "message": "Vehicle not found."}


def test_consume_service_parts_deducts_stock_and_records_costs(db, make_vehicle, make_part):
    vehicle = make_vehicle()
    filt = make_part(sku="F-1", name="Oil filter", quantity=5, unit_cost=20.0)
    pad = make_part(sku="B-1", name="Brake pad", quantity=4, unit_cost=35.5)
    note = {"_id": ObjectId(), "vehicle_id": vehicle["_id"], "start_date": "2024-03-01"}

    result = procedures.consume_service_parts(db, note, [
        {"part_id": filt["_id"], "quantity": 2},
        {"part_id": pad["_id"], "quantity": 4},
    ])

    assert result["success"] is True
    assert db.parts.find_one({"_id": filt["_id"]})["quantity"] == 3
    assert db.parts.find_one({"_id": pad["_id"]})["quantity"] == 0

    rows = list(db.service_order_parts.find({"service_note_id": note["_id"]}))
    assert sorted((r["quantity_used"], r["unit_cost_at_time"]) for r in rows) == [(2, 20.0), (4, 35.5)]

    costs = list(db.costs.find({"origin": COST_ORIGIN_SERVICE}))
    assert len(costs) == 2
    assert sum(c["amount"] for c in costs) == 40.0 + 142.0
    assert all(c["cost_date"] == "2024-03-01" and c["source_reference"] == note["_id"] for c in costs)


def test_consume_service_parts_is_all_or_nothing(db, make_part):
    ok = make_part(sku="F-1", quantity=5)
    short = make_part(sku="B-1", quantity=1)
    note = {"_id": ObjectId(), "vehicle_id": None}

    result = procedures.consume_service_parts(db, note, [
        {"part_id": ok["_id"], "quantity": 2},
        {"part_id": short["_id"], "quantity": 3},
    ])

    assert result["success"] is False
    assert db.parts.find_one({"_id": ok["_id"]})["quantity"] == 5
    assert db.parts.find_one({"_id": short["_id"]})["quantity"] == 1
    assert db.service_order_parts.count_documents({}) == 0
    assert db.costs.count_documents({}) == 0


def test_apply_received_stock_runs_once(db, make_part):
    part = make_part(quantity=2)
    order_id = db.purchase_orders.insert_one({"status": "Received", "total_amount": 50.0}).inserted_id
    db.purchase_order_items.insert_many([
        {"purchase_order_id": order_id, "part_id": part["_id"], "quantity": 5, "unit_price": 10.0},
        {"purchase_order_id": order_id, "part_id": None, "quantity": 1, "unit_price": 3.0},
    ])

    first = procedures.apply_received_stock(db, order_id)
    second = procedures.apply_received_stock(db, order_id)

    assert first["parts_updated"] == 1
    assert second["parts_updated"] == 0
    assert db.parts.find_one({"_id": part["_id"]})["quantity"] == 7


def test_apply_received_stock_requires_received_status(db):
    order_id = db.purchase_orders.insert_one({"status": "Pending"}).inserted_id
    assert procedures.apply_received_stock(db, order_id)["success"] is False


def test_purchase_cost_generation_and_sync(db):
    order = {"_id": ObjectId(), "order_number": "PO-7", "total_amount": 120.0, "order_date": "2024-05-02"}
    procedures.generate_purchase_cost(db, order, "Auto Parts Co")

    cost = db.costs.find_one({"origin": COST_ORIGIN_PURCHASE})
    assert cost["amount"] == 120.0
    assert "PO-7" in cost["description"] and "Auto Parts Co" in cost["description"]

    procedures.sync_purchase_cost(db, {**order, "total_amount": 80.0})
    assert db.costs.find_one({"_id": cost["_id"]})["amount"] == 80.0


def test_record_vehicle_mileage_only_raises(db, make_vehicle):
    vehicle = make_vehicle(mileage=10000)
    assert procedures.record_vehicle_mileage(db, vehicle["_id"], 9000) is False
    assert procedures.record_vehicle_mileage(db, vehicle["_id"], 12000) is True
    stored = db.vehicles.find_one({"_id": vehicle["_id"]})
    assert stored["mileage"] == stored["total_mileage"] == 12000


def test_actual_vehicle_status():
    vid = ObjectId()
    assert procedures.actual_vehicle_status({"_id": vid, "status": "Available"}, {vid}) == "In Contract"
    assert procedures.actual_vehicle_status({"_id": vid, "status": "In Use"}, set()) == "Available"
    assert procedures.actual_vehicle_status({"_id": vid, "status": "Maintenance"}, set()) == "Maintenance"
