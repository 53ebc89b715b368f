from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta

from fleetdesk.constants.fleet import PURCHASE_ORDER_CANCELLED

DEFAULT_WINDOW_DAYS = 365
TOP_PARTS_LIMIT = 10


def default_date_range(today: date | None = None) -> tuple[str, str]:
    end = today or date.today()
    start = end - timedelta(days=DEFAULT_WINDOW_DAYS)
    return start.isoformat(), end.isoformat()


def purchase_statistics(db, start: str, end: str) -> dict:
    """
    Purchase department figures for orders dated within [start, end]
    (ISO dates, inclusive). Cancelled orders are left out.
    """
    orders = list(db.purchase_orders.find({
        "order_date": {"$gte": start, "$lte": end},
        "status": {"$ne": PURCHASE_ORDER_CANCELLED},
    }).sort([("order_date", 1), ("created_at", 1)]))

    order_ids = [o["_id"] for o in orders]
    order_dates = {o["_id"]: o.get("order_date") or "" for o in orders}

    items = list(db.purchase_order_items.find({"purchase_order_id": {"$in": order_ids}})) if order_ids else []

    part_ids = [i["part_id"] for i in items if i.get("part_id")]
    part_names = {}
    if part_ids:
        part_names = {p["_id"]: p.get("name") or "" for p in db.parts.find({"_id": {"$in": part_ids}}, {"name": 1})}

    total_amount = sum(float(o.get("total_amount") or 0) for o in orders)
    total_items = sum(int(i.get("quantity") or 0) for i in items)

    monthly: dict[str, dict] = {}
    for o in orders:
        month = (o.get("order_date") or "")[:7]
        bucket = monthly.setdefault(month, {"month": month, "orders_count": 0, "total_amount": 0.0})
        bucket["orders_count"] += 1
        bucket["total_amount"] += float(o.get("total_amount") or 0)

    by_part: dict[str, dict] = defaultdict(lambda: {"quantity": 0, "total_value": 0.0})
    price_evolution = []
    for i in items:
        name = part_names.get(i.get("part_id")) or i.get("description") or ""
        qty = int(i.get("quantity") or 0)
        unit_price = float(i.get("unit_price") or 0)

        agg = by_part[name]
        agg["quantity"] += qty
        agg["total_value"] += qty * unit_price

        price_evolution.append({
            "part_name": name,
            "date": order_dates.get(i.get("purchase_order_id"), ""),
            "unit_price": unit_price,
        })

    most_purchased = sorted(
        ({"part_name": k, "quantity": v["quantity"], "total_value": round(v["total_value"], 2)} for k, v in by_part.items()),
        key=lambda x: (-x["quantity"], x["part_name"]),
    )[:TOP_PARTS_LIMIT]

    price_evolution.sort(key=lambda x: (x["date"], x["part_name"]))

    return {
        "start": start,
        "end": end,
        "total_orders": len(orders),
        "total_amount": round(total_amount, 2),
        "total_items": total_items,
        "average_order_value": round(total_amount / len(orders), 2) if orders else 0.0,
        "monthly_spending": [
            {**m, "total_amount": round(m["total_amount"], 2)} for _, m in sorted(monthly.items())
        ],
        "most_purchased_parts": most_purchased,
        "price_evolution": price_evolution,
    }


def price_evolution_for_part(price_evolution: list[dict], part_name: str | None) -> list[dict]:
    """
    One part -> all of its points. No part -> first point of each part (summary).
    """
    if part_name:
        return [p for p in price_evolution if p["part_name"] == part_name]

    seen = set()
    out = []
    for p in price_evolution:
        if p["part_name"] in seen:
            continue
        seen.add(p["part_name"])
        out.append(p)
    return out


def available_parts(price_evolution: list[dict]) -> list[str]:
    return sorted({p["part_name"] for p in price_evolution if p["part_name"]})
