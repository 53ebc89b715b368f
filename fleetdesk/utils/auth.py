from __future__ import annotations

from datetime import datetime, timezone, timedelta

from flask import session, current_app

SESSION_EMPLOYEE_ID = "employee_id"
SESSION_ROLE = "role"
SESSION_LOGIN_AT = "login_at"
SESSION_REMEMBER_ME = "remember_me"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def login_user(employee_id, role: str, remember_me: bool = False) -> None:
    """
    Stores the auth session.

    remember_me=True makes the cookie permanent (PERMANENT_SESSION_LIFETIME)
    and extends the validity window to SESSION_TIMEOUT.
    """
    session.clear()
    session[SESSION_EMPLOYEE_ID] = str(employee_id)
    session[SESSION_ROLE] = role
    session[SESSION_LOGIN_AT] = utcnow().isoformat()
    session[SESSION_REMEMBER_ME] = bool(remember_me)
    session.permanent = bool(remember_me)
    session.modified = True


def logout_user() -> None:
    session.pop(SESSION_EMPLOYEE_ID, None)
    session.pop(SESSION_ROLE, None)
    session.pop(SESSION_LOGIN_AT, None)
    session.pop(SESSION_REMEMBER_ME, None)
    session.modified = True


def is_logged_in() -> bool:
    return bool(session.get(SESSION_EMPLOYEE_ID))


def get_last_login_time() -> datetime | None:
    raw = session.get(SESSION_LOGIN_AT)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw))
    except ValueError:
        return None


def get_session_age(now: datetime | None = None) -> timedelta:
    last = get_last_login_time()
    if last is None:
        return timedelta(0)
    return (now or utcnow()) - last


def session_timeout(remember_me: bool) -> timedelta:
    if remember_me:
        return current_app.config["SESSION_TIMEOUT"]
    return current_app.config["SESSION_DEFAULT_TIMEOUT"]


def is_session_valid(now: datetime | None = None) -> bool:
    if get_last_login_time() is None:
        return False
    timeout = session_timeout(bool(session.get(SESSION_REMEMBER_ME)))
    return get_session_age(now) < timeout


def format_session_age(age: timedelta | None) -> str:
    if not age:
        return "Never"

    minutes = int(age.total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days} days ago"
    if hours > 0:
        return f"{hours} hours ago"
    if minutes > 0:
        return f"{minutes} minutes ago"
    return "Just now"
