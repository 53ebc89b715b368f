import argparse
import logging
from typing import Any, Dict, Optional

from pymongo import MongoClient, errors
from werkzeug.security import generate_password_hash

from fleetdesk.config import Config
from fleetdesk.constants.fleet import DEFAULT_MAINTENANCE_TYPES
from fleetdesk.constants.permissions import role_keys
from fleetdesk.extensions import ensure_indexes
from fleetdesk.utils.forms import utcnow

logger = logging.getLogger("fleet_bootstrap")


def get_db() -> Any:
    client = MongoClient(Config.MONGO_URI, serverSelectionTimeoutMS=5000)
    return client[Config.MONGO_DB_NAME]


def seed_maintenance_types(db: Any, names=None) -> int:
    created = 0
    for name in names or DEFAULT_MAINTENANCE_TYPES:
        res = db.maintenance_types.update_one(
            {"name": name},
            {"$setOnInsert": {"name": name, "created_at": utcnow()}},
            upsert=True,
        )
        if res.upserted_id is not None:
            logger.info("Maintenance type added: %s", name)
            created += 1
    return created


def make_employee_doc(
    name: str,
    email: str,
    password: str,
    role: str,
    employee_code: Optional[str] = None,
    purchases: bool = False,
) -> Dict[str, Any]:
    if role not in role_keys():
        raise ValueError(f"Unknown role: {role}")
    t = utcnow()
    return {
        "name": name.strip(),
        "email": email.strip().lower(),
        "password_hash": generate_password_hash(password),
        "role": role,
        "active": True,
        "employee_code": (employee_code or "").strip() or None,
        "phone": None,
        "permissions": {"purchases": bool(purchases)},
        "created_at": t,
        "updated_at": t,
    }


def cmd_ping(args: argparse.Namespace) -> None:
    db = get_db()
    db.client.admin.command("ping")
    print(f"connected ({Config.MONGO_URI}, db={Config.MONGO_DB_NAME})")


def cmd_init(args: argparse.Namespace) -> None:
    db = get_db()
    ensure_indexes(db)
    created = seed_maintenance_types(db)
    print(f"indexes ensured, {created} maintenance type(s) added.")


def cmd_create_employee(args: argparse.Namespace) -> None:
    db = get_db()
    ensure_indexes(db)

    try:
        doc = make_employee_doc(
            name=args.name,
            email=args.email,
            password=args.password,
            role=args.role,
            employee_code=args.code,
            purchases=args.purchases,
        )
    except ValueError as exc:
        raise SystemExit(str(exc))

    try:
        res = db.employees.insert_one(doc)
    except errors.DuplicateKeyError:
        raise SystemExit("email already exists.")

    print(f"Employee created: _id={res.inserted_id} email={doc['email']} role={doc['role']}")


def cmd_list_employees(args: argparse.Namespace) -> None:
    db = get_db()
    q = {}
    if args.only_active:
        q["active"] = {"$ne": False}

    items = list(db.employees.find(q, {"name": 1, "email": 1, "role": 1, "active": 1}).sort("name", 1))
    if not items:
        print("(empty)")
        return

    for e in items:
        print(f"- {e.get('email')} | name={e.get('name')} | role={e.get('role')} | active={e.get('active', True)}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="FleetDesk bootstrap (MongoDB)")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_ping = sub.add_parser("ping", help="Check the MongoDB connection")
    s_ping.set_defaults(func=cmd_ping)

    s_init = sub.add_parser("init", help="Create indexes and seed maintenance types")
    s_init.set_defaults(func=cmd_init)

    s_create = sub.add_parser("create-employee", help="Create an employee login")
    s_create.add_argument("--name", required=True)
    s_create.add_argument("--email", required=True)
    s_create.add_argument("--password", required=True)
    s_create.add_argument("--role", default="Admin", choices=role_keys())
    s_create.add_argument("--code", default="")
    s_create.add_argument("--purchases", action="store_true", help="Grant the purchases module")
    s_create.set_defaults(func=cmd_create_employee)

    s_list = sub.add_parser("list-employees", help="List employees")
    s_list.add_argument("--only-active", action="store_true")
    s_list.set_defaults(func=cmd_list_employees)

    return p


def main() -> None:
    logging.basicConfig(level=Config.LOG_LEVEL.upper(), format="%(levelname)s %(message)s")
    parser = build_parser()
    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
