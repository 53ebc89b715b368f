from __future__ import annotations

import logging

from flask import render_template, request, redirect, url_for, flash, g
from pymongo.errors import PyMongoError
from werkzeug.security import check_password_hash, generate_password_hash

from fleetdesk.extensions import get_db
from fleetdesk.utils.auth import format_session_age, get_session_age, get_last_login_time
from fleetdesk.utils.forms import clean, utcnow
from fleetdesk.utils.layout import render_internal_page, build_app_layout_context
from fleetdesk.utils.permissions import route_required
from . import main_bp

logger = logging.getLogger(__name__)

UNAUTHORIZED_REASONS = {
    "inactive": "Your account is inactive. Contact an administrator.",
    "insufficient_permissions": "You don't have permission to open this page.",
}


@main_bp.get("/")
@route_required
def index():
    # land on the first page the role can open
    nav = build_app_layout_context("")["nav_items"]
    if nav:
        return redirect(url_for(nav[0]["endpoint"]))
    return redirect(url_for("main.profile"))


@main_bp.get("/unauthorized")
def unauthorized():
    reason = request.args.get("reason") or "insufficient_permissions"
    message = UNAUTHORIZED_REASONS.get(reason, UNAUTHORIZED_REASONS["insufficient_permissions"])
    return render_template("public/unauthorized.html", reason=reason, message=message), 403


@main_bp.get("/dashboard")
@route_required
def dashboard():
    db = get_db()

    open_notes = db.service_notes.count_documents({"status": {"$ne": "Completed"}})
    pending_orders = db.purchase_orders.count_documents({"status": "Pending"})
    low_stock = sum(
        1 for p in db.parts.find({"is_active": {"$ne": False}}, {"quantity": 1, "min_quantity": 1})
        if int(p.get("quantity") or 0) <= int(p.get("min_quantity") or 0)
    )

    return render_internal_page(
        "public/dashboard.html",
        active_page="dashboard",
        vehicles_count=db.vehicles.count_documents({}),
        open_service_notes=open_notes,
        pending_purchase_orders=pending_orders,
        low_stock_parts=low_stock,
    )


@main_bp.get("/profile")
@route_required
def profile():
    return render_internal_page(
        "public/profile.html",
        active_page="profile",
        last_login=get_last_login_time(),
        session_age=format_session_age(get_session_age()),
    )


@main_bp.post("/profile")
@route_required
def profile_update():
    name = clean(request.form.get("name"))
    phone = clean(request.form.get("phone"))

    if len(name) < 2:
        flash("Name is required.", "error")
        return redirect(url_for("main.profile"))

    try:
        get_db().employees.update_one(
            {"_id": g.user["_id"]},
            {"$set": {"name": name, "phone": phone or None, "updated_at": utcnow()}},
        )
    except PyMongoError:
        logger.exception("Profile update failed for %s", g.user["_id"])
        flash("Error updating profile.", "error")
        return redirect(url_for("main.profile"))

    flash("Profile updated.", "success")
    return redirect(url_for("main.profile"))


@main_bp.post("/profile/password")
@route_required
def profile_password():
    current_password = request.form.get("current_password") or ""
    new_password = request.form.get("new_password") or ""
    confirm_password = request.form.get("confirm_password") or ""

    if not check_password_hash(g.user.get("password_hash") or "", current_password):
        flash("Current password is incorrect.", "error")
        return redirect(url_for("main.profile"))

    if len(new_password) < 6:
        flash("Password must be at least 6 characters.", "error")
        return redirect(url_for("main.profile"))

    if new_password != confirm_password:
        flash("Passwords do not match.", "error")
        return redirect(url_for("main.profile"))

    try:
        get_db().employees.update_one(
            {"_id": g.user["_id"]},
            {"$set": {"password_hash": generate_password_hash(new_password), "updated_at": utcnow()}},
        )
    except PyMongoError:
        logger.exception("Password update failed for %s", g.user["_id"])
        flash("Error updating password.", "error")
        return redirect(url_for("main.profile"))

    flash("Password updated.", "success")
    return redirect(url_for("main.profile"))
