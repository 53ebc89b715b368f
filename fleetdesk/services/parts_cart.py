from __future__ import annotations

import json

from fleetdesk.utils.forms import oid, to_int


def parse_cart(raw) -> list[dict]:
    """
    Parts cart as posted by the service note form (hidden JSON field):
      [{"part_id": "...", "quantity": 2}, ...]
    Lines for the same part are merged, non-positive quantities dropped.
    """
    if not raw:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return []
    if not isinstance(raw, list):
        return []

    cart: list[dict] = []
    for line in raw:
        if not isinstance(line, dict):
            continue
        part_id = oid(line.get("part_id"))
        quantity = to_int(line.get("quantity", line.get("quantity_to_use")), 0)
        if not part_id or not quantity:
            continue
        cart = update_quantity(cart, part_id, quantity_of(cart, part_id) + quantity)
    return cart


def quantity_of(cart: list[dict], part_id) -> int:
    for line in cart:
        if str(line["part_id"]) == str(part_id):
            return line["quantity"]
    return 0


def add_to_cart(cart: list[dict], part_id, quantity: int = 1) -> list[dict]:
    return update_quantity(cart, part_id, quantity_of(cart, part_id) + quantity)


def update_quantity(cart: list[dict], part_id, quantity: int) -> list[dict]:
    if quantity <= 0:
        return remove_from_cart(cart, part_id)

    out = []
    found = False
    for line in cart:
        if str(line["part_id"]) == str(part_id):
            out.append({**line, "quantity": quantity})
            found = True
        else:
            out.append(line)
    if not found:
        out.append({"part_id": part_id, "quantity": quantity})
    return out


def remove_from_cart(cart: list[dict], part_id) -> list[dict]:
    return [line for line in cart if str(line["part_id"]) != str(part_id)]


def price_cart(cart: list[dict], parts_by_id: dict) -> tuple[list[dict], list[str]]:
    """
    Joins cart lines with part docs. Returns (priced_lines, errors);
    errors name missing parts and lines above the available stock.
    """
    lines = []
    errors = []
    for line in cart:
        part = parts_by_id.get(str(line["part_id"]))
        if not part or part.get("is_active") is False:
            errors.append("Part not found.")
            continue

        available = int(part.get("quantity") or 0)
        if line["quantity"] > available:
            errors.append(
                f"Insufficient stock for {part.get('name')}: {available} available, {line['quantity']} requested."
            )
            continue

        unit_cost = float(part.get("unit_cost") or 0)
        lines.append({
            "part_id": part["_id"],
            "sku": part.get("sku") or "",
            "name": part.get("name") or "",
            "available_quantity": available,
            "quantity": line["quantity"],
            "unit_cost": unit_cost,
            "total_cost": round(unit_cost * line["quantity"], 2),
        })
    return lines, errors
