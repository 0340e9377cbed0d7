"""Accounts and session handling."""

import logging
from datetime import datetime
from functools import wraps
from typing import Optional

from blinker import Namespace
from flask import flash, g, redirect, request, session, url_for
from werkzeug.security import check_password_hash, generate_password_hash

from . import repository
from .db import User
from .errors import AuthError, NotFoundError

logger = logging.getLogger(__name__)

ROLES = ("admin", "manager", "user", "viewer")
USER_STATUSES = ("active", "inactive", "pending")

_signals = Namespace()

# Sent with the Flask app as sender and user=<User or None> after sign-in or sign-out.
session_changed = _signals.signal("session-changed")

SESSION_KEY = "user_id"


def sign_up(email: str, password: str, full_name: Optional[str] = None) -> User:
    """Create an account. The very first account becomes an admin."""
    role = "admin" if repository.count_users() == 0 else "user"
    user = repository.create_user(
        email=email,
        password_hash=generate_password_hash(password),
        full_name=full_name,
        role=role,
    )
    logger.info("Signed up %s as %s", user.email, role)
    return user


def authenticate(email: str, password: str) -> User:
    """Return the user for valid credentials; raise AuthError otherwise."""
    user = repository.get_user_by_email(email)
    if user is None or not check_password_hash(user.password_hash, password):
        logger.warning("Failed sign-in for %s", email)
        raise AuthError("Invalid email or password")
    if user.status != "active":
        logger.warning("Sign-in refused for %s account %s", user.status, user.email)
        raise AuthError(f"This account is {user.status}")
    return user


def sign_in(app, user: User, now: Optional[datetime] = None) -> None:
    session[SESSION_KEY] = user.id
    repository.touch_sign_in(user, now or datetime.now())
    g.user = user
    session_changed.send(app, user=user)
    logger.info("Signed in %s", user.email)


def sign_out(app) -> None:
    user = current_user()
    session.pop(SESSION_KEY, None)
    g.user = None
    session_changed.send(app, user=None)
    if user is not None:
        logger.info("Signed out %s", user.email)


def current_user() -> Optional[User]:
    """The signed-in user for this request, loaded once and cached on g."""
    if "user" not in g:
        user_id = session.get(SESSION_KEY)
        user = None
        if user_id:
            try:
                user = repository.get_user(user_id)
            except NotFoundError:
                session.pop(SESSION_KEY, None)
            else:
                if user.status != "active":
                    session.pop(SESSION_KEY, None)
                    user = None
        g.user = user
    return g.user


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if current_user() is None:
            flash("Please sign in to continue", "error")
            return redirect(url_for("main.sign_in", next=request.path))
        return view(*args, **kwargs)

    return wrapped


def role_required(*roles: str):
    """Restrict a view to signed-in users holding one of the given roles."""

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            user = current_user()
            if user is None:
                flash("Please sign in to continue", "error")
                return redirect(url_for("main.sign_in", next=request.path))
            if user.role not in roles:
                flash("You do not have permission to do that", "error")
                return redirect(url_for("main.index"))
            return view(*args, **kwargs)

        return wrapped

    return decorator
