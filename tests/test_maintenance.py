import json
from datetime import datetime, timedelta, timezone

import pytest

from fleetdesk.blueprints.maintenance.routes import format_duration, is_checkin_overdue


@pytest.fixture()
def mechanic(make_employee):
    return make_employee("Mechanic", name="Max Mechanic")


@pytest.fixture()
def yard_vehicle(make_vehicle):
    return make_vehicle(plate="SRV0001", status="In Yard", mileage=50000)


@pytest.fixture()
def maintenance_types(db):
    db.maintenance_types.insert_many([{"name": "Preventive"}, {"name": "Brakes"}])


def _payload(vehicle, mechanic, **overrides):
    data = {
        "vehicle_id": str(vehicle["_id"]),
        "maintenance_type": "Preventive",
        "start_date": "2024-04-01",
        "end_date": "",
        "employee_id": str(mechanic["_id"]),
        "priority": "High",
        "mileage": "50500",
        "description": "Oil and filter change",
        "observations": "",
        "status": "Open",
        "parts_cart": "[]",
    }
    data.update(overrides)
    return data


def test_new_form_offers_serviceable_vehicles_and_defaults_mechanic(client, login, mechanic, make_vehicle, maintenance_types):
    make_vehicle(plate="YRD0001", status="In Yard")
    make_vehicle(plate="RNT0001", status="In Use")
    login(client, mechanic)

    resp = client.get("/maintenance/new")
    assert resp.status_code == 200
    assert b"YRD0001" in resp.data
    assert b"RNT0001" not in resp.data
    assert f'value="{mechanic["_id"]}" selected'.encode() in resp.data
    assert b"Preventive" in resp.data


def test_create_service_note_with_parts(client, login, mechanic, yard_vehicle, make_part, db, maintenance_types):
    part = make_part(quantity=6, unit_cost=30.0)
    login(client, mechanic)

    cart = json.dumps([{"part_id": str(part["_id"]), "quantity": 2}])
    resp = client.post("/maintenance/new", data=_payload(yard_vehicle, mechanic, parts_cart=cart))
    assert resp.status_code == 302

    note = db.service_notes.find_one({})
    assert note["mechanic"] == "Max Mechanic"
    assert note["end_date"] is None
    assert note["observations"] is None
    assert note["mileage"] == 50500
    assert db.parts.find_one({"_id": part["_id"]})["quantity"] == 4
    assert db.service_order_parts.count_documents({"service_note_id": note["_id"]}) == 1
    assert db.costs.find_one({"source_reference": note["_id"]})["amount"] == 60.0


@pytest.mark.parametrize("field", ["vehicle_id", "maintenance_type", "description", "employee_id"])
def test_required_fields(client, login, mechanic, yard_vehicle, db, field):
    login(client, mechanic)
    resp = client.post("/maintenance/new", data=_payload(yard_vehicle, mechanic, **{field: ""}))
    assert resp.status_code == 400
    assert db.service_notes.count_documents({}) == 0


def test_vehicle_must_be_in_yard_or_available(client, login, mechanic, make_vehicle, db):
    login(client, mechanic)
    busy = make_vehicle(plate="BSY0001", status="Maintenance")
    resp = client.post("/maintenance/new", data=_payload(busy, mechanic))
    assert resp.status_code == 400


def test_mileage_guard_blocks_big_drop(client, login, mechanic, yard_vehicle, db):
    login(client, mechanic)
    resp = client.post("/maintenance/new", data=_payload(yard_vehicle, mechanic, mileage="44999"))
    assert resp.status_code == 400
    assert b"significantly lower" in resp.data


def test_cart_above_stock_blocks_save(client, login, mechanic, yard_vehicle, make_part, db):
    part = make_part(quantity=1)
    login(client, mechanic)
    cart = json.dumps([{"part_id": str(part["_id"]), "quantity": 3}])
    resp = client.post("/maintenance/new", data=_payload(yard_vehicle, mechanic, parts_cart=cart))
    assert resp.status_code == 400
    assert db.service_notes.count_documents({}) == 0
    assert db.parts.find_one({"_id": part["_id"]})["quantity"] == 1


def test_edit_and_add_parts(client, login, mechanic, yard_vehicle, make_part, db):
    login(client, mechanic)
    client.post("/maintenance/new", data=_payload(yard_vehicle, mechanic))
    note = db.service_notes.find_one({})

    resp = client.post(f"/maintenance/{note['_id']}/edit", data=_payload(yard_vehicle, mechanic, status="Completed"))
    assert resp.status_code == 302
    assert db.service_notes.find_one({"_id": note["_id"]})["status"] == "Completed"

    part = make_part(quantity=3)
    client.post(f"/maintenance/{note['_id']}/parts", data={"part_id": str(part["_id"]), "quantity": "2"})
    assert db.parts.find_one({"_id": part["_id"]})["quantity"] == 1

    detail = client.get(f"/maintenance/{note['_id']}")
    assert detail.status_code == 200
    assert b"Oil filter" in detail.data


def test_checkin_and_checkout(client, login, mechanic, yard_vehicle, db):
    login(client, mechanic)
    client.post("/maintenance/new", data=_payload(yard_vehicle, mechanic))
    note = db.service_notes.find_one({})

    client.post(f"/maintenance/{note['_id']}/checkin", data={"mechanic_id": str(mechanic["_id"])})
    assert db.maintenance_checkins.count_documents({"checkout_at": None}) == 1

    # second check-in refused while one is open
    client.post(f"/maintenance/{note['_id']}/checkin", data={"mechanic_id": str(mechanic["_id"])})
    assert db.maintenance_checkins.count_documents({}) == 1

    detail = client.get(f"/maintenance/{note['_id']}")
    assert b"0h 0m" in detail.data

    client.post(f"/maintenance/{note['_id']}/checkout", data={
        "mileage": "51000",
        "fuel_level": "40",
        "signature_url": "https://files.example/sig.png",
        "notes": "done",
    })
    checkin = db.maintenance_checkins.find_one({})
    assert checkin["checkout_at"] is not None
    assert checkin["signature_url"] == "https://files.example/sig.png"
    assert checkin["fuel_level"] == 40.0
    assert db.vehicles.find_one({"_id": yard_vehicle["_id"]})["total_mileage"] == 51000


def test_checkin_requires_mechanic(client, login, mechanic, yard_vehicle, db):
    login(client, mechanic)
    client.post("/maintenance/new", data=_payload(yard_vehicle, mechanic))
    note = db.service_notes.find_one({})

    client.post(f"/maintenance/{note['_id']}/checkin", data={"mechanic_id": ""})
    assert db.maintenance_checkins.count_documents({}) == 0


def test_parts_search_api(client, login, mechanic, make_part):
    make_part(sku="FLT-001", name="Oil filter", quantity=5)
    make_part(sku="BRK-001", name="Brake pad", quantity=0)
    login(client, mechanic)

    body = client.get("/maintenance/api/parts?q=filter").get_json()
    assert [p["sku"] for p in body["parts"]] == ["FLT-001"]

    # out of stock parts are not offered
    body = client.get("/maintenance/api/parts?q=brake").get_json()
    assert body["parts"] == []


def test_price_cart_api(client, login, mechanic, make_part):
    part = make_part(quantity=2, unit_cost=12.5)
    login(client, mechanic)

    resp = client.post("/maintenance/api/cart", json={"cart": [{"part_id": str(part["_id"]), "quantity": 2}]})
    assert resp.status_code == 200
    assert resp.get_json()["total"] == 25.0

    resp = client.post("/maintenance/api/cart", json={"cart": [{"part_id": str(part["_id"]), "quantity": 5}]})
    assert resp.status_code == 400


def test_duration_and_overdue():
    now = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)
    assert format_duration(now - timedelta(hours=3, minutes=7), now) == "3h 7m"
    assert format_duration((now - timedelta(minutes=5)).replace(tzinfo=None), now) == "0h 5m"

    assert is_checkin_overdue({"checkin_at": now - timedelta(hours=25)}, now) is True
    assert is_checkin_overdue({"checkin_at": now - timedelta(hours=23)}, now) is False
    assert is_checkin_overdue(None, now) is False


@pytest.mark.parametrize("mileage", ["inf", "1e999", "nan"])
def test_unparseable_mileage_is_rejected(client, login, mechanic, yard_vehicle, db, mileage):
    login(client, mechanic)
    resp = client.post("/maintenance/new", data=_payload(yard_vehicle, mechanic, mileage=mileage))
    assert resp.status_code == 400
    assert b"Invalid mileage" in resp.data
    assert db.service_notes.count_documents({}) == 0


def test_checkout_rejects_unparseable_readings(client, login, mechanic, yard_vehicle, db):
    login(client, mechanic)
    client.post("/maintenance/new", data=_payload(yard_vehicle, mechanic))
    note = db.service_notes.find_one({})
    client.post(f"/maintenance/{note['_id']}/checkin", data={"mechanic_id": str(mechanic["_id"])})

    client.post(f"/maintenance/{note['_id']}/checkout", data={"mileage": "inf", "fuel_level": "40"})
    client.post(f"/maintenance/{note['_id']}/checkout", data={"mileage": "51000", "fuel_level": "nan"})
    assert db.maintenance_checkins.count_documents({"checkout_at": None}) == 1
    assert db.vehicles.find_one({"_id": yard_vehicle["_id"]})["total_mileage"] == 50000


def test_parts_search_api_drops_matches_spread_over_sku_and_name(client, login, mechanic, make_part):
    make_part(sku="OIL-100", name="Filter", quantity=5)
    make_part(sku="FLT-002", name="Oilter gasket", quantity=5)
    login(client, mechanic)

    # every trigram of "oilter" is on the first part, split between its sku and name
    body = client.get("/maintenance/api/parts?q=oilter").get_json()
    assert [p["sku"] for p in body["parts"]] == ["FLT-002"]


def test_add_single_part_defaults_to_one_unit(client, login, mechanic, yard_vehicle, make_part, db):
    login(client, mechanic)
    client.post("/maintenance/new", data=_payload(yard_vehicle, mechanic))
    note = db.service_notes.find_one({})
    part = make_part(quantity=3)

    client.post(f"/maintenance/{note['_id']}/parts", data={"part_id": str(part["_id"])})
    assert db.parts.find_one({"_id": part["_id"]})["quantity"] == 2

    client.post(f"/maintenance/{note['_id']}/parts", data={"part_id": str(part["_id"]), "quantity": "0"})
    assert db.parts.find_one({"_id": part["_id"]})["quantity"] == 2


def test_open_checkin_is_unique_per_service_note(client, login, mechanic, yard_vehicle, db, monkeypatch):
    from fleetdesk.blueprints.maintenance import routes

    login(client, mechanic)
    client.post("/maintenance/new", data=_payload(yard_vehicle, mechanic))
    note = db.service_notes.find_one({})
    checkin = {"mechanic_id": str(mechanic["_id"])}

    # two posts racing past the lookup: the index refuses the second open check-in
    monkeypatch.setattr(routes, "_active_checkin", lambda db, note_id: None)
    client.post(f"/maintenance/{note['_id']}/checkin", data=checkin)
    resp = client.post(f"/maintenance/{note['_id']}/checkin", data=checkin)
    assert resp.status_code == 302
    assert db.maintenance_checkins.count_documents({"checkout_at": None}) == 1
    monkeypatch.undo()

    client.post(f"/maintenance/{note['_id']}/checkout", data={"mileage": "", "fuel_level": ""})
    client.post(f"/maintenance/{note['_id']}/checkin", data=checkin)
    assert db.maintenance_checkins.count_documents({}) == 2
    assert db.maintenance_checkins.count_documents({"is_open": True}) == 1
