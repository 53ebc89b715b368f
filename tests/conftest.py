from __future__ import annotations

from datetime import datetime, timezone

import mongomock
import pytest
from werkzeug.security import generate_password_hash

from fleetdesk import create_app
from fleetdesk.config import TestConfig
from fleetdesk.utils.auth import (
    SESSION_EMPLOYEE_ID,
    SESSION_LOGIN_AT,
    SESSION_REMEMBER_ME,
    SESSION_ROLE,
)

PASSWORD = "secret123"


@pytest.fixture()
def app():
    app = create_app(TestConfig, mongo_client=mongomock.MongoClient())
    yield app


@pytest.fixture()
def db(app):
    with app.app_context():
        from fleetdesk.extensions import get_db
        yield get_db()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_employee(db):
    def _make(role="Admin", email=None, name=None, active=True, permissions=None):
        doc = {
            "name": name or f"{role} Person",
            "email": (email or f"{role.lower()}@fleet.test").lower(),
            "password_hash": generate_password_hash(PASSWORD),
            "role": role,
            "active": active,
            "permissions": permissions or {},
            "created_at": datetime.now(timezone.utc),
        }
        doc["_id"] = db.employees.insert_one(doc).inserted_id
        return doc
    return _make


def login_as(client, employee, remember_me=False, login_at=None):
    with client.session_transaction() as sess:
        sess[SESSION_EMPLOYEE_ID] = str(employee["_id"])
        sess[SESSION_ROLE] = employee["role"]
        sess[SESSION_LOGIN_AT] = (login_at or datetime.now(timezone.utc)).isoformat()
        sess[SESSION_REMEMBER_ME] = remember_me
    return client


@pytest.fixture()
def login():
    return login_as


@pytest.fixture()
def admin(make_employee):
    return make_employee("Admin")


@pytest.fixture()
def admin_client(client, admin):
    return login_as(client, admin)


@pytest.fixture()
def make_vehicle(db):
    def _make(plate="ABC1234", status="Available", mileage=10000, model="Fiat Uno"):
        doc = {
            "plate": plate,
            "model": model,
            "status": status,
            "mileage": mileage,
            "total_mileage": mileage,
        }
        doc["_id"] = db.vehicles.insert_one(doc).inserted_id
        return doc
    return _make


@pytest.fixture()
def make_part(db):
    def _make(sku="FLT-001", name="Oil filter", quantity=10, unit_cost=25.0, min_quantity=2):
        from fleetdesk.utils.parts_search import build_parts_search_terms

        doc = {
            "sku": sku,
            "name": name,
            "quantity": quantity,
            "unit_cost": unit_cost,
            "min_quantity": min_quantity,
            "search_terms": build_parts_search_terms(sku, name),
            "is_active": True,
        }
        doc["_id"] = db.parts.insert_one(doc).inserted_id
        return doc
    return _make


@pytest.fixture()
def make_contract(db):
    def _make(vehicle, start="2000-01-01", end="2999-12-31", status="Active", number="CT-1"):
        doc = {
            "vehicle_id": vehicle["_id"],
            "contract_number": number,
            "customer_name": "ACME Rentals",
            "start_date": start,
            "end_date": end,
            "status": status,
        }
        doc["_id"] = db.contracts.insert_one(doc).inserted_id
        return doc
    return _make
