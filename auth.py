"""
User Authentication — Flask-Login blueprint.

Provides register, login, logout, email verification and the current-user
endpoint. Accounts are bound to a school through their institutional email
domain. Uses werkzeug.security for password hashing.
"""

from __future__ import annotations

import math
import secrets
import sqlite3
from datetime import datetime, timedelta, timezone
from functools import wraps

from flask import Blueprint, current_app, jsonify, request
from flask_login import LoginManager, UserMixin, current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash, generate_password_hash

from audit import log_event
from database import get_db, transaction
from db_stores import SchoolStoreDB, UserStoreDB
from email_service import EmailService
from errors import AppError, ConflictError, ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from extensions import limiter
from helpers import json_body

LOCKOUT_THRESHOLD = 5
LOCKOUT_MINUTES = 15

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")
login_manager = LoginManager()


class User(UserMixin):
    """Wraps a DB user row for Flask-Login."""

    def __init__(self, id: str, name: str, email: str, school_id: str, email_verified: bool = False):
        self.id = id
        self.name = name
        self.email = email
        self.school_id = school_id
        self.email_verified = email_verified

    @staticmethod
    def get(user_id: str):
        row = UserStoreDB(get_db()).get(user_id)
        if row:
            return User(row["id"], row["name"], row["email"], row["school_id"], row["email_verified"])
        return None


@login_manager.user_loader
def load_user(user_id):
    return User.get(user_id)


@login_manager.unauthorized_handler
def _unauthorized():
    raise UnauthorizedError("Authentication required")


def email_verified_required(view):
    """Like login_required, and the account's email must be verified."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            raise UnauthorizedError("Authentication required")
        if not current_user.email_verified:
            raise ForbiddenError("Verify your email address first", "EMAIL_NOT_VERIFIED")
        return view(*args, **kwargs)

    return wrapper


def _validate_password(password: str) -> str | None:
    """Return an error message if password is too weak, else None."""
    if len(password) < 8:
        return "Password must be at least 8 characters."
    if not any(c.isupper() for c in password):
        return "Password must contain at least one uppercase letter."
    if not any(c.islower() for c in password):
        return "Password must contain at least one lowercase letter."
    if not any(c.isdigit() for c in password):
        return "Password must contain at least one digit."
    return None


def _school_for_email(email: str) -> dict | None:
    """School owning the email's domain, trying parent domains (cs.drexel.edu -> drexel.edu)."""
    schools = SchoolStoreDB(get_db())
    labels = email.rsplit("@", 1)[1].split(".")
    for i in range(len(labels) - 1):
        school = schools.get_by_domain(".".join(labels[i:]))
        if school:
            return school
    return None


@auth_bp.route("/register", methods=["POST"])
@limiter.limit("3 per hour")
def register():
    data = json_body()
    name = str(data.get("name") or "").strip()
    email = str(data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    school_domain = str(data.get("school_domain") or "").strip().lower()

    if not name or not email or not isinstance(password, str) or not password:
        raise ValidationError("Name, email and password are required.")

    suffix = current_app.config.get("INSTITUTIONAL_EMAIL_SUFFIX", ".edu")
    if "@" not in email or not email.endswith(suffix):
        raise ValidationError(f"Use your school email address (ending in {suffix}).", "INVALID_EMAIL")

    school = _school_for_email(email)
    if school is None:
        raise NotFoundError("No school is registered for this email domain.", "SCHOOL_NOT_FOUND")
    if school_domain and school_domain != school["domain"]:
        raise ValidationError("Email domain does not match the selected school.", "DOMAIN_MISMATCH")

    pw_error = _validate_password(password)
    if pw_error:
        raise ValidationError(pw_error, "WEAK_PASSWORD")

    db = get_db()
    users = UserStoreDB(db)
    if users.email_exists(email):
        raise ConflictError("An account with this email already exists.", "EMAIL_EXISTS", 409)

    token = secrets.token_urlsafe(32)
    try:
        with transaction(db):
            user_id = users.create(school["id"], name, email, generate_password_hash(password), token)
    except sqlite3.IntegrityError:
        raise ConflictError("An account with this email already exists.", "EMAIL_EXISTS", 409)

    EmailService.send_verification(email, name, token)
    log_event("register", user_id, f"email={email}")
    return jsonify({
        "message": "Registration successful. Check your email to verify your account.",
        "user": users.get(user_id),
    }), 201


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("5 per 15 minutes")
def login():
    data = json_body()
    email = str(data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not isinstance(password, str) or not password:
        raise ValidationError("Email and password are required.")

    db = get_db()
    users = UserStoreDB(db)
    row = users.get_auth_row(email)
    if not row:
        raise UnauthorizedError("Invalid email or password.", "INVALID_CREDENTIALS")

    now = datetime.now(timezone.utc)
    previous_attempts = row["login_attempts"]
    if row["locked_until"]:
        try:
            remaining = (datetime.fromisoformat(row["locked_until"]) - now).total_seconds()
        except ValueError:
            remaining = 0
        if remaining > 0:
            log_event("login_locked", row["id"], f"email={email}")
            raise AppError(
                f"Account temporarily locked. Try again in {math.ceil(remaining / 60)} minute(s).",
                "ACCOUNT_LOCKED", 429,
            )
        # Lock expired: start counting again
        previous_attempts = 0

    if not check_password_hash(row["password_hash"], password):
        attempts = previous_attempts + 1
        locked_until = ""
        if attempts >= LOCKOUT_THRESHOLD:
            locked_until = (now + timedelta(minutes=LOCKOUT_MINUTES)).isoformat()
        with transaction(db):
            users.record_failed_login(row["id"], attempts, locked_until)
        log_event("login_failed", row["id"], f"email={email} attempts={attempts}")
        raise UnauthorizedError("Invalid email or password.", "INVALID_CREDENTIALS")

    with transaction(db):
        users.reset_login_attempts(row["id"])

    login_user(User(row["id"], row["name"], row["email"], row["school_id"], bool(row["email_verified"])),
               remember=True)
    log_event("login_success", row["id"])
    return jsonify({"message": "Logged in", "user": users.get(row["id"])})


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    log_event("logout", current_user.id)
    logout_user()
    return jsonify({"message": "Logged out"})


@auth_bp.route("/verify-email", methods=["POST"])
def verify_email():
    token = str(json_body().get("token") or request.args.get("token", "")).strip()
    if not token:
        raise ValidationError("Verification token is required.", "INVALID_TOKEN")
    db = get_db()
    with transaction(db):
        user_id = UserStoreDB(db).verify_email(token)
    if user_id is None:
        raise ValidationError("Invalid or already used verification token.", "INVALID_TOKEN")
    log_event("email_verified", user_id)
    return jsonify({"message": "Email verified"})


@auth_bp.route("/me")
@login_required
def me():
    db = get_db()
    user = UserStoreDB(db).get(current_user.id)
    user["school"] = SchoolStoreDB(db).get(user["school_id"])
    return jsonify({"user": user})
