"""Tests for lifecycle.ReviewLifecycleManager and the /reviews routes."""

from __future__ import annotations

import pytest

from conftest import reputation
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from lifecycle import ReviewLifecycleManager, summarize_ratings
from voting import VotingEngine


def review_payload(**overrides):
    payload = {
        "workload_rating": 3,
        "difficulty_rating": 4,
        "overall_rating": 5,
        "review_text": "Tough but fair, go to office hours.",
        "attendance_required": True,
        "exam_style": "Open book",
    }
    payload.update(overrides)
    return payload


class TestCreateReview:
    def test_create_awards_ten(self, db, world):
        rep = reputation(db, world.alice)
        review = ReviewLifecycleManager(db).create_review(world.alice, world.cs260, **review_payload())
        assert review["overall_rating"] == 5
        assert review["attendance_required"] is True
        assert review["helpful_votes"] == 0
        assert review["author"]["name"] == "Alice"
        assert reputation(db, world.alice) == rep + 10

    def test_one_review_per_course(self, db, world):
        reviews = ReviewLifecycleManager(db)
        reviews.create_review(world.alice, world.cs260, **review_payload())
        rep = reputation(db, world.alice)
        with pytest.raises(ConflictError) as exc:
            reviews.create_review(world.alice, world.cs260, **review_payload())
        assert exc.value.code == "ALREADY_REVIEWED"
        assert exc.value.status_code == 409
        assert reputation(db, world.alice) == rep

    @pytest.mark.parametrize("field,value", [
        ("workload_rating", 0),
        ("difficulty_rating", 6),
        ("overall_rating", "5"),
        ("overall_rating", 4.5),
        ("workload_rating", True),
        ("overall_rating", None),
    ])
    def test_invalid_rating(self, db, world, field, value):
        with pytest.raises(ValidationError) as exc:
            ReviewLifecycleManager(db).create_review(world.alice, world.cs260, **review_payload(**{field: value}))
        assert exc.value.code == "INVALID_RATING"

    @pytest.mark.parametrize("value", ["false", 0, 1, None])
    def test_attendance_flag_must_be_boolean(self, db, world, value):
        with pytest.raises(ValidationError) as exc:
            ReviewLifecycleManager(db).create_review(
                world.alice, world.cs260, **review_payload(attendance_required=value),
            )
        assert exc.value.code == "VALIDATION_ERROR"
        assert db.execute("SELECT COUNT(*) FROM course_reviews").fetchone()[0] == 0

    def test_review_text_required(self, db, world):
        with pytest.raises(ValidationError):
            ReviewLifecycleManager(db).create_review(world.alice, world.cs260, **review_payload(review_text="  "))

    def test_other_school_forbidden(self, db, world):
        with pytest.raises(ForbiddenError):
            ReviewLifecycleManager(db).create_review(world.dave, world.cs260, **review_payload())


class TestReviewQueries:
    def test_list_sorted_by_helpful_with_viewer_flag(self, db, world):
        reviews = ReviewLifecycleManager(db)
        first = reviews.create_review(world.alice, world.cs260, **review_payload())
        second = reviews.create_review(world.bob, world.cs260, **review_payload(overall_rating=2))
        VotingEngine(db).vote_helpful(first["id"], world.bob)

        page = reviews.list_reviews(world.cs260, viewer_id=world.bob)
        assert [r["id"] for r in page["reviews"]] == [first["id"], second["id"]]
        assert page["reviews"][0]["has_voted"] is True
        assert page["pagination"]["limit"] == 10

        recent = reviews.list_reviews(world.cs260, sort="recent")
        assert [r["id"] for r in recent["reviews"]] == [second["id"], first["id"]]

    def test_invalid_sort(self, db, world):
        with pytest.raises(ValidationError):
            ReviewLifecycleManager(db).list_reviews(world.cs260, sort="worst")

    def test_course_stats(self, db, world):
        reviews = ReviewLifecycleManager(db)
        reviews.create_review(world.alice, world.cs260, **review_payload(workload_rating=4, overall_rating=5))
        reviews.create_review(world.bob, world.cs260, **review_payload(
            workload_rating=3, overall_rating=4, attendance_required=False,
        ))
        stats = reviews.course_stats(world.cs260)
        assert stats["review_count"] == 2
        assert stats["average_workload_rating"] == 3.5
        assert stats["average_overall_rating"] == 4.5
        assert stats["average_difficulty_rating"] == 4.0
        assert stats["attendance_required_percent"] == 50

    def test_course_stats_empty(self, db, world):
        stats = ReviewLifecycleManager(db).course_stats(world.cs171)
        assert stats["review_count"] == 0
        assert stats["average_overall_rating"] == 0

    def test_summarize_ratings_rounds_half_up(self):
        stats = summarize_ratings({"total": 3, "workload": 3.25, "difficulty": 2.05, "overall": 4.15, "attendance": 2})
        assert stats["average_workload_rating"] == 3.3
        assert stats["average_overall_rating"] == 4.2
        assert stats["attendance_required_percent"] == 67

    def test_get_missing_review(self, db):
        with pytest.raises(NotFoundError):
            ReviewLifecycleManager(db).get_review("missing")


class TestUpdateDeleteReview:
    def test_partial_update(self, db, world):
        reviews = ReviewLifecycleManager(db)
        review = reviews.create_review(world.alice, world.cs260, **review_payload())
        updated = reviews.update_review(review["id"], world.alice, {"overall_rating": 2, "exam_style": None})
        assert updated["overall_rating"] == 2
        assert updated["workload_rating"] == 3
        assert updated["exam_style"] is None

    def test_update_validates_ratings(self, db, world):
        reviews = ReviewLifecycleManager(db)
        review = reviews.create_review(world.alice, world.cs260, **review_payload())
        with pytest.raises(ValidationError):
            reviews.update_review(review["id"], world.alice, {"overall_rating": 9})

    def test_update_rejects_string_attendance_flag(self, db, world):
        reviews = ReviewLifecycleManager(db)
        review = reviews.create_review(world.alice, world.cs260, **review_payload(attendance_required=False))
        with pytest.raises(ValidationError):
            reviews.update_review(review["id"], world.alice, {"attendance_required": "true"})
        assert reviews.get_review(review["id"])["attendance_required"] is False

    def test_non_owner_cannot_edit_or_delete(self, db, world):
        reviews = ReviewLifecycleManager(db)
        review = reviews.create_review(world.alice, world.cs260, **review_payload())
        with pytest.raises(ForbiddenError):
            reviews.update_review(review["id"], world.bob, {"overall_rating": 1})
        with pytest.raises(ForbiddenError):
            reviews.delete_review(review["id"], world.bob)

    def test_delete_cascades_votes_and_keeps_reputation(self, db, world):
        reviews = ReviewLifecycleManager(db)
        review = reviews.create_review(world.alice, world.cs260, **review_payload())
        VotingEngine(db).vote_helpful(review["id"], world.bob)
        rep = reputation(db, world.alice)
        reviews.delete_review(review["id"], world.alice)
        assert reputation(db, world.alice) == rep
        assert db.execute("SELECT COUNT(*) FROM helpful_votes").fetchone()[0] == 0

    def test_review_again_after_delete(self, db, world):
        reviews = ReviewLifecycleManager(db)
        review = reviews.create_review(world.alice, world.cs260, **review_payload())
        reviews.delete_review(review["id"], world.alice)
        reviews.create_review(world.alice, world.cs260, **review_payload())


class TestReviewRoutes:
    def test_create_list_and_stats(self, alice_client, client, world):
        resp = alice_client.post(f"/api/v1/reviews/courses/{world.cs260}/reviews", json=review_payload())
        assert resp.status_code == 201
        resp = alice_client.post(f"/api/v1/reviews/courses/{world.cs260}/reviews", json=review_payload())
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "ALREADY_REVIEWED"

        body = client.get(f"/api/v1/reviews/courses/{world.cs260}/reviews").get_json()
        assert body["pagination"]["total"] == 1
        stats = client.get(f"/api/v1/reviews/courses/{world.cs260}/stats").get_json()["stats"]
        assert stats["review_count"] == 1

    def test_invalid_rating_route(self, alice_client, world):
        resp = alice_client.post(f"/api/v1/reviews/courses/{world.cs260}/reviews",
                                 json=review_payload(overall_rating=7))
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_RATING"

    def test_string_attendance_flag_rejected_route(self, alice_client, world):
        resp = alice_client.post(f"/api/v1/reviews/courses/{world.cs260}/reviews",
                                 json=review_payload(attendance_required="false"))
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "VALIDATION_ERROR"

    def test_unverified_cannot_review(self, carol_client, world):
        resp = carol_client.post(f"/api/v1/reviews/courses/{world.cs260}/reviews", json=review_payload())
        assert resp.status_code == 403

    def test_helpful_vote_route(self, alice_client, bob_client, world):
        review_id = alice_client.post(
            f"/api/v1/reviews/courses/{world.cs260}/reviews", json=review_payload(),
        ).get_json()["review"]["id"]
        resp = bob_client.post(f"/api/v1/reviews/{review_id}/helpful")
        assert resp.status_code == 201
        assert resp.get_json()["helpful_votes"] == 1
        assert bob_client.get(f"/api/v1/reviews/{review_id}").get_json()["review"]["has_voted"] is True
        resp = bob_client.delete(f"/api/v1/reviews/{review_id}/helpful")
        assert resp.get_json()["helpful_votes"] == 0
