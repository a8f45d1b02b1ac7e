"""Tests for auth.py — register, login, lockout, logout, email verification."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import PASSWORD
from database import transaction

REGISTER = "/api/v1/auth/register"
LOGIN = "/api/v1/auth/login"


def register(client, **overrides):
    payload = {"name": "Erin", "email": "erin@drexel.edu", "password": "Securepass123"}
    payload.update(overrides)
    return client.post(REGISTER, json=payload)


class TestRegister:
    def test_register_success(self, client, db, world):
        resp = register(client)
        assert resp.status_code == 201
        user = resp.get_json()["user"]
        assert user["school_id"] == world.drexel
        assert user["email_verified"] is False
        assert user["reputation_score"] == 0
        assert "password_hash" not in user
        row = db.execute("SELECT email_verification_token FROM users WHERE id = ?", (user["id"],)).fetchone()
        assert row[0]

    def test_subdomain_email_maps_to_school(self, client, world):
        resp = register(client, email="erin@cs.drexel.edu")
        assert resp.status_code == 201
        assert resp.get_json()["user"]["school_id"] == world.drexel

    def test_non_institutional_email(self, client):
        resp = register(client, email="erin@gmail.com")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_EMAIL"

    def test_unknown_school(self, client):
        resp = register(client, email="erin@nowhere.edu")
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "SCHOOL_NOT_FOUND"

    def test_domain_mismatch(self, client):
        resp = register(client, school_domain="temple.edu")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "DOMAIN_MISMATCH"

    @pytest.mark.parametrize("password", ["Ab1", "alllowercase1", "ALLUPPERCASE1", "NoDigitsHere"])
    def test_weak_password(self, client, password):
        resp = register(client, password=password)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "WEAK_PASSWORD"

    def test_duplicate_email(self, client):
        resp = register(client, email="alice@drexel.edu")
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "EMAIL_EXISTS"

    def test_missing_fields(self, client):
        resp = client.post(REGISTER, json={"email": "erin@drexel.edu"})
        assert resp.status_code == 400

    def test_non_object_body(self, client):
        resp = client.post(REGISTER, json=["not", "an", "object"])
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "VALIDATION_ERROR"


class TestLogin:
    def test_login_success(self, client):
        resp = client.post(LOGIN, json={"email": "alice@drexel.edu", "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.get_json()["user"]["name"] == "Alice"
        me = client.get("/api/v1/auth/me").get_json()["user"]
        assert me["email"] == "alice@drexel.edu"
        assert me["school"]["domain"] == "drexel.edu"

    def test_email_is_case_insensitive(self, client):
        resp = client.post(LOGIN, json={"email": "ALICE@Drexel.edu", "password": PASSWORD})
        assert resp.status_code == 200

    def test_wrong_password(self, client):
        resp = client.post(LOGIN, json={"email": "alice@drexel.edu", "password": "Wrongpass1"})
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "INVALID_CREDENTIALS"

    def test_unknown_email(self, client):
        resp = client.post(LOGIN, json={"email": "ghost@drexel.edu", "password": PASSWORD})
        assert resp.status_code == 401

    def test_lockout_after_five_failures(self, client, db, world):
        for _ in range(5):
            client.post(LOGIN, json={"email": "alice@drexel.edu", "password": "Wrongpass1"})
        resp = client.post(LOGIN, json={"email": "alice@drexel.edu", "password": PASSWORD})
        assert resp.status_code == 429
        assert resp.get_json()["error"]["code"] == "ACCOUNT_LOCKED"

    def test_expired_lock_allows_login(self, client, db, world):
        past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        with transaction(db):
            db.execute("UPDATE users SET login_attempts = 5, locked_until = ? WHERE id = ?", (past, world.alice))
        resp = client.post(LOGIN, json={"email": "alice@drexel.edu", "password": PASSWORD})
        assert resp.status_code == 200
        row = db.execute("SELECT login_attempts, locked_until FROM users WHERE id = ?", (world.alice,)).fetchone()
        assert (row["login_attempts"], row["locked_until"]) == (0, "")

    def test_failure_after_expired_lock_starts_over(self, client, db, world):
        past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        with transaction(db):
            db.execute("UPDATE users SET login_attempts = 5, locked_until = ? WHERE id = ?", (past, world.alice))
        resp = client.post(LOGIN, json={"email": "alice@drexel.edu", "password": "Wrongpass1"})
        assert resp.status_code == 401
        row = db.execute("SELECT login_attempts, locked_until FROM users WHERE id = ?", (world.alice,)).fetchone()
        assert (row["login_attempts"], row["locked_until"]) == (1, "")

    def test_failed_logins_are_audited(self, client, db, world):
        client.post(LOGIN, json={"email": "alice@drexel.edu", "password": "Wrongpass1"})
        actions = [r[0] for r in db.execute("SELECT action FROM audit_log WHERE user_id = ?", (world.alice,))]
        assert "login_failed" in actions


class TestSession:
    def test_logout(self, alice_client):
        assert alice_client.post("/api/v1/auth/logout").status_code == 200
        resp = alice_client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "UNAUTHORIZED"

    def test_clients_do_not_share_identity(self, alice_client, bob_client):
        assert alice_client.get("/api/v1/auth/me").get_json()["user"]["name"] == "Alice"
        assert bob_client.get("/api/v1/auth/me").get_json()["user"]["name"] == "Bob"


class TestEmailVerification:
    def test_verify_unlocks_contributions(self, carol_client, world):
        resp = carol_client.post(f"/api/v1/resources/courses/{world.cs260}/notes", json={"title": "Notes"})
        assert resp.status_code == 403

        resp = carol_client.post("/api/v1/auth/verify-email", json={"token": "carol-token"})
        assert resp.status_code == 200
        assert carol_client.get("/api/v1/auth/me").get_json()["user"]["email_verified"] is True

        resp = carol_client.post(f"/api/v1/resources/courses/{world.cs260}/notes", json={"title": "Notes"})
        assert resp.status_code == 201

    def test_token_is_single_use(self, client):
        assert client.post("/api/v1/auth/verify-email", json={"token": "carol-token"}).status_code == 200
        resp = client.post("/api/v1/auth/verify-email", json={"token": "carol-token"})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_TOKEN"

    def test_registration_then_verification(self, client, db):
        user_id = register(client).get_json()["user"]["id"]
        token = db.execute("SELECT email_verification_token FROM users WHERE id = ?", (user_id,)).fetchone()[0]
        assert client.post("/api/v1/auth/verify-email", json={"token": token}).status_code == 200


class TestVerificationMail:
    def test_log_backend_reports_success(self, app):
        from email_service import EmailService

        with app.app_context():
            assert EmailService.send_verification("erin@drexel.edu", "Erin", "tok") is True

    def test_smtp_failure_is_reported_not_raised(self, app, monkeypatch):
        import smtplib

        from email_service import EmailService

        def refuse(*args, **kwargs):
            raise OSError("connection refused")

        monkeypatch.setattr(smtplib, "SMTP", refuse)
        app.config["EMAIL_BACKEND"] = "smtp"
        with app.app_context():
            assert EmailService.send_verification("erin@drexel.edu", "Erin", "tok") is False
