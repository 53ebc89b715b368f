from __future__ import annotations

import logging

from flask import request, jsonify, flash

from fleetdesk.extensions import get_db
from fleetdesk.services.statistics import (
    available_parts,
    default_date_range,
    price_evolution_for_part,
    purchase_statistics,
)
from fleetdesk.utils.forms import clean, parse_iso_date
from fleetdesk.utils.layout import render_internal_page
from fleetdesk.utils.permissions import route_required
from . import statistics_bp

logger = logging.getLogger(__name__)


def _date_range(args) -> tuple[str, str, str | None]:
    """Returns (start, end, error); bad input falls back to the default window."""
    default_start, default_end = default_date_range()
    raw_start = clean(args.get("start"))
    raw_end = clean(args.get("end"))

    start = parse_iso_date(raw_start) if raw_start else default_start
    end = parse_iso_date(raw_end) if raw_end else default_end

    if not start or not end:
        return default_start, default_end, "Invalid date."
    if start > end:
        return default_start, default_end, "Start date cannot be after the end date."
    return start, end, None


@statistics_bp.get("/")
@route_required
def statistics_page():
    start, end, err = _date_range(request.args)
    if err:
        flash(err, "error")

    stats = purchase_statistics(get_db(), start, end)
    selected_part = clean(request.args.get("part")) or None

    return render_internal_page(
        "statistics/purchases.html",
        active_page="statistics",
        stats=stats,
        start=start,
        end=end,
        parts=available_parts(stats["price_evolution"]),
        selected_part=selected_part,
        price_points=price_evolution_for_part(stats["price_evolution"], selected_part),
    )


@statistics_bp.get("/api/purchases")
@route_required
def api_purchase_statistics():
    start, end, err = _date_range(request.args)
    if err:
        return jsonify({"ok": False, "error": "invalid_date_range", "message": err}), 400

    stats = purchase_statistics(get_db(), start, end)
    logger.debug("Purchase statistics %s..%s: %d order(s)", start, end, stats["total_orders"])
    return jsonify({"ok": True, "statistics": stats})
