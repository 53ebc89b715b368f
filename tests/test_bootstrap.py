import mongomock
import pytest
from werkzeug.security import check_password_hash

from fleet_bootstrap import build_parser, make_employee_doc, seed_maintenance_types
from fleetdesk.constants.fleet import DEFAULT_MAINTENANCE_TYPES


def test_seed_maintenance_types_is_repeatable():
    db = mongomock.MongoClient().fleetdesk
    assert seed_maintenance_types(db) == len(DEFAULT_MAINTENANCE_TYPES)
    assert seed_maintenance_types(db) == 0
    assert db.maintenance_types.count_documents({}) == len(DEFAULT_MAINTENANCE_TYPES)


def test_make_employee_doc():
    doc = make_employee_doc("Ana", " Ana@Fleet.TEST ", "pw123456", "Manager", purchases=True)
    assert doc["email"] == "ana@fleet.test"
    assert doc["active"] is True
    assert doc["permissions"] == {"purchases": True}
    assert check_password_hash(doc["password_hash"], "pw123456")


def test_make_employee_doc_rejects_unknown_role():
    with pytest.raises(ValueError):
        make_employee_doc("Ana", "ana@fleet.test", "pw", "Pilot")


def test_parser_commands():
    args = build_parser().parse_args(["create-employee", "--name", "Ana", "--email", "a@b.c", "--password", "x", "--role", "Driver"])
    assert args.role == "Driver"
    assert args.purchases is False
