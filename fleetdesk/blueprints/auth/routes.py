from __future__ import annotations

import logging

from flask import render_template, request, redirect, url_for, flash, g
from werkzeug.security import check_password_hash

from fleetdesk.extensions import get_db
from fleetdesk.utils.auth import login_user, logout_user
from fleetdesk.utils.forms import clean
from fleetdesk.utils.permissions import can_access
from . import auth_bp

logger = logging.getLogger(__name__)


def _safe_next(raw: str | None) -> str | None:
    target = clean(raw)
    if not target.startswith("/") or target.startswith("//"):
        return None
    return target


@auth_bp.get("/login")
def login_page():
    if getattr(g, "user", None) and g.user.get("active") is not False:
        return redirect(url_for("main.index"))
    return render_template("public/login.html", next=request.args.get("next") or "")


@auth_bp.post("/login")
def login():
    db = get_db()

    email = clean(request.form.get("email")).lower()
    password = request.form.get("password") or ""
    remember_me = request.form.get("remember_me") in ("1", "on", "true")
    next_path = _safe_next(request.form.get("next"))

    if not email or not password:
        flash("Fill in email and password.", "error")
        return redirect(url_for("auth.login_page", next=next_path))

    employee = db.employees.find_one({"email": email})
    if not employee or not check_password_hash(employee.get("password_hash") or "", password):
        logger.info("Failed login for %s", email)
        flash("Invalid email or password.", "error")
        return redirect(url_for("auth.login_page", next=next_path))

    login_user(employee["_id"], employee.get("role") or "User", remember_me=remember_me)
    logger.info("Login: %s (%s)", email, employee.get("role"))

    if employee.get("active") is False:
        return redirect(url_for("main.unauthorized", reason="inactive"))

    if next_path and can_access(employee, next_path):
        return redirect(next_path)
    return redirect(url_for("main.index"))


@auth_bp.get("/logout")
def logout():
    logout_user()
    flash("Logged out.", "info")
    return redirect(url_for("auth.login_page"))
