"""Tests for voting.py — upvotes, helpful votes, usage counter, saves and reputation awards."""

from __future__ import annotations

import sqlite3
import threading

import pytest

from conftest import make_cards, reputation
from database import connect
from errors import ConflictError, NotFoundError
from lifecycle import ResourceLifecycleManager, ReviewLifecycleManager
from voting import REPUTATION_AWARDS, SavedItems, VotingEngine


@pytest.fixture
def flashcard_set(db, world):
    return ResourceLifecycleManager(db).create_flashcard_set(world.alice, world.cs260, "Trees", make_cards())


@pytest.fixture
def review(db, world):
    return ReviewLifecycleManager(db).create_review(
        world.alice, world.cs260, 3, 4, 5, "Solid course with fair exams.",
    )


def upvote_rows(db, resource_id):
    return db.execute("SELECT COUNT(*) FROM resource_upvotes WHERE resource_id = ?", (resource_id,)).fetchone()[0]


class TestUpvotes:
    def test_cast_upvote_increments_counter_and_awards_owner(self, db, world, flashcard_set):
        before = reputation(db, world.alice)
        result = VotingEngine(db).cast_upvote(flashcard_set["id"], world.bob)
        assert result["upvotes"] == 1
        assert reputation(db, world.alice) == before + REPUTATION_AWARDS["upvote_received"]
        assert upvote_rows(db, flashcard_set["id"]) == 1

    def test_duplicate_upvote_rejected_without_side_effects(self, db, world, flashcard_set):
        engine = VotingEngine(db)
        engine.cast_upvote(flashcard_set["id"], world.bob)
        rep = reputation(db, world.alice)
        with pytest.raises(ConflictError) as exc:
            engine.cast_upvote(flashcard_set["id"], world.bob)
        assert exc.value.code == "ALREADY_UPVOTED"
        assert reputation(db, world.alice) == rep
        assert upvote_rows(db, flashcard_set["id"]) == 1

    def test_upvote_missing_resource(self, db, world):
        with pytest.raises(NotFoundError):
            VotingEngine(db).cast_upvote("missing", world.bob)

    def test_self_upvote_allowed(self, db, world, flashcard_set):
        result = VotingEngine(db).cast_upvote(flashcard_set["id"], world.alice)
        assert result["upvotes"] == 1

    def test_remove_upvote_keeps_reputation(self, db, world, flashcard_set):
        engine = VotingEngine(db)
        engine.cast_upvote(flashcard_set["id"], world.bob)
        rep = reputation(db, world.alice)
        result = engine.remove_upvote(flashcard_set["id"], world.bob)
        assert result["upvotes"] == 0
        assert reputation(db, world.alice) == rep
        assert upvote_rows(db, flashcard_set["id"]) == 0

    def test_remove_without_vote(self, db, world, flashcard_set):
        with pytest.raises(ConflictError) as exc:
            VotingEngine(db).remove_upvote(flashcard_set["id"], world.bob)
        assert exc.value.code == "NOT_UPVOTED"

    def test_revote_after_removal_awards_again(self, db, world, flashcard_set):
        engine = VotingEngine(db)
        rep = reputation(db, world.alice)
        engine.cast_upvote(flashcard_set["id"], world.bob)
        engine.remove_upvote(flashcard_set["id"], world.bob)
        engine.cast_upvote(flashcard_set["id"], world.bob)
        assert reputation(db, world.alice) == rep + 2

    def test_resource_deleted_before_insert_is_not_found(self, app, db, world, flashcard_set, monkeypatch):
        engine = VotingEngine(db)

        def deleted_meanwhile(user_id, target_id):
            other = connect(app.config["DATABASE"])
            other.execute("DELETE FROM study_resources WHERE id = ?", (target_id,))
            other.commit()
            other.close()
            return False

        monkeypatch.setattr(engine.upvotes, "exists", deleted_meanwhile)
        with pytest.raises(NotFoundError):
            engine.cast_upvote(flashcard_set["id"], world.bob)
        assert upvote_rows(db, flashcard_set["id"]) == 0

    def test_concurrent_upvotes_keep_counter_consistent(self, app, db, world, flashcard_set):
        """Several voters at once: counter equals rows, no lost updates."""
        from database import transaction
        from db_stores import UserStoreDB

        voters = []
        with transaction(db):
            for i in range(8):
                voters.append(UserStoreDB(db).create(world.drexel, f"Voter {i}", f"v{i}@drexel.edu", "x"))

        errors = []

        def vote(user_id):
            conn = connect(app.config["DATABASE"], timeout=30)
            try:
                VotingEngine(conn).cast_upvote(flashcard_set["id"], user_id)
            except (ConflictError, sqlite3.Error) as e:
                errors.append(e)
            finally:
                conn.close()

        threads = [threading.Thread(target=vote, args=(v,)) for v in voters]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        row = db.execute("SELECT upvotes FROM study_resources WHERE id = ?", (flashcard_set["id"],)).fetchone()
        assert row["upvotes"] == upvote_rows(db, flashcard_set["id"]) == 8


class TestHelpfulVotes:
    def test_vote_helpful(self, db, world, review):
        rep = reputation(db, world.alice)
        result = VotingEngine(db).vote_helpful(review["id"], world.bob)
        assert result["helpful_votes"] == 1
        assert reputation(db, world.alice) == rep + REPUTATION_AWARDS["helpful_vote_received"]

    def test_cannot_vote_own_review(self, db, world, review):
        with pytest.raises(ConflictError) as exc:
            VotingEngine(db).vote_helpful(review["id"], world.alice)
        assert exc.value.code == "CANNOT_VOTE_OWN"

    def test_duplicate_helpful_vote(self, db, world, review):
        engine = VotingEngine(db)
        engine.vote_helpful(review["id"], world.bob)
        with pytest.raises(ConflictError) as exc:
            engine.vote_helpful(review["id"], world.bob)
        assert exc.value.code == "ALREADY_VOTED"

    def test_remove_helpful_vote(self, db, world, review):
        engine = VotingEngine(db)
        engine.vote_helpful(review["id"], world.bob)
        rep = reputation(db, world.alice)
        result = engine.remove_helpful_vote(review["id"], world.bob)
        assert result["helpful_votes"] == 0
        assert reputation(db, world.alice) == rep

    def test_remove_missing_helpful_vote(self, db, world, review):
        with pytest.raises(ConflictError) as exc:
            VotingEngine(db).remove_helpful_vote(review["id"], world.bob)
        assert exc.value.code == "NOT_VOTED"

    def test_helpful_vote_missing_review(self, db, world):
        with pytest.raises(NotFoundError):
            VotingEngine(db).vote_helpful("missing", world.bob)

    def test_review_deleted_before_insert_is_not_found(self, app, db, world, review, monkeypatch):
        engine = VotingEngine(db)

        def deleted_meanwhile(user_id, target_id):
            other = connect(app.config["DATABASE"])
            other.execute("DELETE FROM course_reviews WHERE id = ?", (target_id,))
            other.commit()
            other.close()
            return False

        monkeypatch.setattr(engine.helpful, "exists", deleted_meanwhile)
        with pytest.raises(NotFoundError):
            engine.vote_helpful(review["id"], world.bob)


class TestUsage:
    def test_increment_usage(self, db, flashcard_set):
        engine = VotingEngine(db)
        engine.increment_usage(flashcard_set["id"])
        assert engine.increment_usage(flashcard_set["id"])["used_count"] == 2

    def test_increment_usage_missing(self, db):
        with pytest.raises(NotFoundError):
            VotingEngine(db).increment_usage("missing")

    def test_increment_usage_is_anonymous(self, client, flashcard_set):
        resp = client.post(f"/api/v1/resources/{flashcard_set['id']}/increment-usage")
        assert resp.status_code == 200
        assert resp.get_json()["used_count"] == 1

    def test_increment_usage_is_never_throttled(self, tmp_path):
        from app import create_app
        from conftest import seed_world
        from database import get_db, init_db, run_migrations

        limited = create_app({
            "TESTING": True,
            "RATELIMIT_ENABLED": True,
            "DATABASE": str(tmp_path / "limited.db"),
            "SECRET_KEY": "test-secret-key",
        })
        with limited.app_context():
            init_db()
            run_migrations()
            world = seed_world(get_db())
        limited._db_initialized = True
        db = connect(limited.config["DATABASE"])
        flashcard_set = ResourceLifecycleManager(db).create_flashcard_set(
            world.alice, world.cs260, "Trees", make_cards(),
        )
        client = limited.test_client()
        url = f"/api/v1/resources/{flashcard_set['id']}/increment-usage"
        # Past both the default hourly limit and any per-minute one
        statuses = {client.post(url).status_code for _ in range(310)}
        assert statuses == {200}
        used = db.execute("SELECT used_count FROM study_resources WHERE id = ?", (flashcard_set["id"],)).fetchone()[0]
        assert used == 310
        db.close()


class TestSaves:
    def test_save_and_list_courses(self, db, world):
        saves = SavedItems(db)
        saves.save_course(world.cs260, world.bob)
        courses = saves.list_saved_courses(world.bob)
        assert [c["id"] for c in courses] == [world.cs260]

    def test_double_save_rejected(self, db, world):
        saves = SavedItems(db)
        saves.save_course(world.cs260, world.bob)
        with pytest.raises(ConflictError) as exc:
            saves.save_course(world.cs260, world.bob)
        assert exc.value.code == "ALREADY_SAVED"

    def test_unsave_missing(self, db, world, flashcard_set):
        with pytest.raises(ConflictError) as exc:
            SavedItems(db).unsave_resource(flashcard_set["id"], world.bob)
        assert exc.value.code == "NOT_SAVED"

    def test_save_missing_target(self, db, world):
        with pytest.raises(NotFoundError):
            SavedItems(db).save_resource("missing", world.bob)

    def test_saved_resources_flag_upvotes(self, db, world, flashcard_set):
        SavedItems(db).save_resource(flashcard_set["id"], world.bob)
        VotingEngine(db).cast_upvote(flashcard_set["id"], world.bob)
        [saved] = SavedItems(db).list_saved_resources(world.bob)
        assert saved["is_saved"] is True
        assert saved["has_upvoted"] is True


class TestVotingRoutes:
    def test_upvote_requires_login(self, client, flashcard_set):
        resp = client.post(f"/api/v1/resources/{flashcard_set['id']}/upvote")
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "UNAUTHORIZED"

    def test_upvote_round_trip(self, bob_client, flashcard_set):
        url = f"/api/v1/resources/{flashcard_set['id']}/upvote"
        resp = bob_client.post(url)
        assert resp.status_code == 201
        assert resp.get_json()["upvotes"] == 1
        resp = bob_client.post(url)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "ALREADY_UPVOTED"
        resp = bob_client.delete(url)
        assert resp.status_code == 200
        assert resp.get_json()["upvotes"] == 0

    def test_helpful_vote_own_review_route(self, alice_client, review):
        resp = alice_client.post(f"/api/v1/reviews/{review['id']}/helpful")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "CANNOT_VOTE_OWN"

    def test_save_course_route(self, bob_client, world):
        resp = bob_client.post(f"/api/v1/courses/{world.cs260}/save")
        assert resp.status_code == 201
        resp = bob_client.get("/api/v1/courses/saved/list")
        assert [c["id"] for c in resp.get_json()["courses"]] == [world.cs260]
        resp = bob_client.delete(f"/api/v1/courses/{world.cs260}/save")
        assert resp.status_code == 200
