"""
Test fixtures for the study exchange.

Provides app, db, world (seeded ids) and per-user logged-in clients on a
file-based SQLite database. Generation is faked by installing a client into
GenerationManager, so no test reaches the network.
"""

from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
from werkzeug.security import generate_password_hash

sys.path.insert(0, str(Path(__file__).parent.parent))

PASSWORD = "TestPass123"
# Cheap hash so login-heavy tests stay fast
PASSWORD_HASH = generate_password_hash(PASSWORD, method="pbkdf2:sha256:1000")


class FakeGenerationClient:
    """Stands in for GenerationClient: returns queued responses, records prompts."""

    def __init__(self):
        self.responses: list[str] = []
        self.calls: list[dict] = []
        self.error: Exception | None = None

    def queue(self, *texts: str) -> None:
        self.responses.extend(texts)

    def complete(self, prompt: str, temperature: float = 0.7, max_tokens: int = 4096) -> str:
        self.calls.append({"prompt": prompt, "temperature": temperature, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        if not self.responses:
            raise AssertionError("FakeGenerationClient has no queued response")
        return self.responses.pop(0)


def seed_world(db) -> SimpleNamespace:
    """Two schools, their courses and four users. Returns the ids."""
    from database import transaction
    from db_stores import CourseStoreDB, DepartmentStoreDB, SchoolStoreDB, UserStoreDB

    schools, depts, courses, users = SchoolStoreDB(db), DepartmentStoreDB(db), CourseStoreDB(db), UserStoreDB(db)
    with transaction(db):
        drexel = schools.create("Drexel University", "drexel.edu")
        temple = schools.create("Temple University", "temple.edu")
        cs = depts.create(drexel["id"], "Computer Science")
        math = depts.create(drexel["id"], "Mathematics")
        bio = depts.create(temple["id"], "Biology")
        cs260 = courses.create(drexel["id"], cs["id"], "CS 260", "Data Structures")
        cs171 = courses.create(drexel["id"], cs["id"], "CS 171", "Computer Programming I")
        math121 = courses.create(drexel["id"], math["id"], "MATH 121", "Calculus I")
        bio101 = courses.create(temple["id"], bio["id"], "BIO 1111", "Introduction to Biology")

        alice = users.create(drexel["id"], "Alice", "alice@drexel.edu", PASSWORD_HASH, email_verified=True)
        bob = users.create(drexel["id"], "Bob", "bob@drexel.edu", PASSWORD_HASH, email_verified=True)
        carol = users.create(drexel["id"], "Carol", "carol@drexel.edu", PASSWORD_HASH, "carol-token")
        dave = users.create(temple["id"], "Dave", "dave@temple.edu", PASSWORD_HASH, email_verified=True)

    return SimpleNamespace(
        drexel=drexel["id"], temple=temple["id"],
        cs_dept=cs["id"], math_dept=math["id"], bio_dept=bio["id"],
        cs260=cs260["id"], cs171=cs171["id"], math121=math121["id"], bio101=bio101["id"],
        alice=alice, bob=bob, carol=carol, dave=dave,
    )


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app
    from database import get_db, init_db, run_migrations

    app = create_app({
        "TESTING": True,
        "DATABASE": str(tmp_path / "test.db"),
        "SECRET_KEY": "test-secret-key",
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "EMAIL_BACKEND": "log",
    })

    # Set up inside a context, but do not hold it open: requests must get their own
    with app.app_context():
        init_db()
        run_migrations()
        app.config["WORLD"] = seed_world(get_db())
    app._db_initialized = True
    yield app


@pytest.fixture
def world(app) -> SimpleNamespace:
    return app.config["WORLD"]


@pytest.fixture
def db(app):
    """A direct connection for driving the engines without HTTP."""
    from database import connect

    conn = connect(app.config["DATABASE"])
    yield conn
    conn.close()


@pytest.fixture(autouse=True)
def fake_generation():
    from extensions import GenerationManager

    fake = FakeGenerationClient()
    GenerationManager.set_client(fake)
    yield fake
    GenerationManager.reset()


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


def login(app, email: str, password: str = PASSWORD):
    client = app.test_client()
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def alice_client(app):
    return login(app, "alice@drexel.edu")


@pytest.fixture
def bob_client(app):
    return login(app, "bob@drexel.edu")


@pytest.fixture
def carol_client(app):
    """Logged in but email not verified."""
    return login(app, "carol@drexel.edu")


@pytest.fixture
def dave_client(app):
    """Verified user at the other school."""
    return login(app, "dave@temple.edu")


def reputation(db, user_id: str) -> int:
    return db.execute("SELECT reputation_score FROM users WHERE id = ?", (user_id,)).fetchone()[0]


def make_cards(n: int = 3) -> list[dict]:
    return [{"front": f"Question {i}", "back": f"Answer {i}"} for i in range(1, n + 1)]
