from __future__ import annotations

import logging

from pymongo import MongoClient, ASCENDING, DESCENDING
from flask import current_app

logger = logging.getLogger(__name__)


def get_mongo_client() -> MongoClient:
    client = current_app.extensions.get("mongo_client")
    if client is None:
        raise RuntimeError("Mongo client is not initialized. Call init_mongo(app) inside create_app().")
    return client


def get_db():
    client = get_mongo_client()
    return client[current_app.config["MONGO_DB_NAME"]]


def ensure_indexes(db) -> None:
    db.employees.create_index([("email", ASCENDING)], unique=True, name="uniq_employee_email")
    db.employees.create_index([("role", ASCENDING)], name="idx_employee_role")

    db.vehicles.create_index([("plate", ASCENDING)], unique=True, name="uniq_vehicle_plate")
    db.contracts.create_index([("vehicle_id", ASCENDING), ("status", ASCENDING)], name="idx_contract_vehicle_status")

    db.inspections.create_index([("vehicle_id", ASCENDING), ("inspected_at", DESCENDING)], name="idx_inspection_vehicle")
    db.service_notes.create_index([("vehicle_id", ASCENDING)], name="idx_service_note_vehicle")
    db.service_order_parts.create_index([("service_note_id", ASCENDING)], name="idx_sop_service_note")
    db.maintenance_checkins.create_index([("service_note_id", ASCENDING)], name="idx_checkin_service_note")
    # one open check-in per service note
    db.maintenance_checkins.create_index(
        [("service_note_id", ASCENDING), ("is_open", ASCENDING)],
        unique=True,
        partialFilterExpression={"is_open": True},
        name="uniq_open_checkin",
    )

    db.parts.create_index([("sku", ASCENDING)], unique=True, name="uniq_part_sku")
    db.parts.create_index([("search_terms", ASCENDING)], name="idx_part_search_terms")

    db.purchase_orders.create_index([("order_date", ASCENDING)], name="idx_po_order_date")
    db.purchase_order_items.create_index([("purchase_order_id", ASCENDING)], name="idx_poi_order")


def init_mongo(app, client: MongoClient | None = None) -> None:
    owns_client = client is None
    if client is None:
        client = MongoClient(app.config["MONGO_URI"], serverSelectionTimeoutMS=5000)
    app.extensions["mongo_client"] = client

    if owns_client:
        # fail fast if mongo not reachable
        client.admin.command("ping")

    ensure_indexes(client[app.config["MONGO_DB_NAME"]])
    logger.info("Mongo ready (db=%s)", app.config["MONGO_DB_NAME"])
