def test_vehicles_page_shows_actual_status(admin_client, make_vehicle, make_contract):
    rented = make_vehicle(plate="AAA0001")
    make_contract(rented)
    make_vehicle(plate="BBB0002", status="In Use")

    resp = admin_client.get("/fleet/")
    assert resp.status_code == 200
    assert b"In Contract" in resp.data
    assert b"In Use" not in resp.data.split(b"<tbody>")[1].split(b"</tbody>")[0]


def test_vehicle_create_uppercases_plate_and_rejects_duplicates(admin_client, db):
    admin_client.post("/fleet/create", data={"plate": "abc1d23", "model": "Onix", "mileage": "1200"})
    stored = db.vehicles.find_one({"plate": "ABC1D23"})
    assert stored["total_mileage"] == 1200

    admin_client.post("/fleet/create", data={"plate": "ABC1D23", "model": "Other"})
    assert db.vehicles.count_documents({"plate": "ABC1D23"}) == 1


def test_vehicle_create_is_limited_to_managers(client, make_employee, login, db, make_vehicle, make_contract):
    login(client, make_employee("Mechanic"))
    client.post("/fleet/create", data={"plate": "ZZZ9999", "model": "Kwid"})
    assert db.vehicles.count_documents({}) == 0

    vehicle = make_vehicle()
    make_contract(vehicle)
    resp = client.get(f"/fleet/api/{vehicle['_id']}/deletion-impact")
    assert resp.status_code == 403
    assert resp.get_json() == {"ok": False, "error": "forbidden"}
    assert b"ACME" not in resp.data


def test_vehicle_search_api_lists_only_contracted_vehicles(admin_client, make_vehicle, make_contract):
    rented = make_vehicle(plate="AAA0001", model="Gol")
    make_contract(rented)
    make_vehicle(plate="BBB0002")
    inactive = make_vehicle(plate="CCC0003", status="Inactive")
    make_contract(inactive, number="CT-2")

    body = admin_client.get("/fleet/api/search").get_json()
    assert [v["plate"] for v in body["vehicles"]] == ["AAA0001"]
    assert body["with_active_contract"] == 1
    assert body["total_vehicles"] == 2

    body = admin_client.get("/fleet/api/search?q=gol").get_json()
    assert len(body["vehicles"]) == 1
    body = admin_client.get("/fleet/api/search?q=xyz").get_json()
    assert body["vehicles"] == []


def test_deletion_impact_page_and_delete(admin_client, db, make_vehicle, make_contract):
    vehicle = make_vehicle()
    make_contract(vehicle, number="CT-9")

    page = admin_client.get(f"/fleet/{vehicle['_id']}/delete")
    assert page.status_code == 200
    assert b"CT-9" in page.data

    api = admin_client.get(f"/fleet/api/{vehicle['_id']}/deletion-impact").get_json()
    assert api["impact"]["has_active_contract"] is True

    resp = admin_client.post(f"/fleet/{vehicle['_id']}/delete")
    assert resp.status_code == 302
    assert db.vehicles.count_documents({}) == 0


def test_deletion_impact_api_bad_id(admin_client):
    resp = admin_client.get("/fleet/api/not-an-id/deletion-impact")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_id"
