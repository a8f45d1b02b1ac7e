"""End-to-end flow over HTTP: sign up, contribute, vote, and check the numbers add up."""

from __future__ import annotations

from conftest import make_cards, reputation

API = "/api/v1"


class TestContributionFlow:
    def test_full_flow(self, app, db, world, bob_client):
        erin = app.test_client()
        resp = erin.post(f"{API}/auth/register", json={
            "name": "Erin", "email": "erin@drexel.edu", "password": "Securepass123",
        })
        assert resp.status_code == 201
        erin_id = resp.get_json()["user"]["id"]
        token = db.execute("SELECT email_verification_token FROM users WHERE id = ?", (erin_id,)).fetchone()[0]

        assert erin.post(f"{API}/auth/login", json={
            "email": "erin@drexel.edu", "password": "Securepass123",
        }).status_code == 200

        # Unverified accounts cannot contribute yet
        cards = {"title": "Trees", "cards": make_cards(4), "exam_tag": "Midterm"}
        assert erin.post(f"{API}/resources/courses/{world.cs260}/flashcards", json=cards).status_code == 403
        assert erin.post(f"{API}/auth/verify-email", json={"token": token}).status_code == 200

        resource = erin.post(f"{API}/resources/courses/{world.cs260}/flashcards", json=cards).get_json()["resource"]
        review = erin.post(f"{API}/reviews/courses/{world.cs260}/reviews", json={
            "workload_rating": 4, "difficulty_rating": 3, "overall_rating": 5,
            "review_text": "Well organised course.",
        }).get_json()["review"]
        assert reputation(db, erin_id) == 15

        assert bob_client.post(f"{API}/resources/{resource['id']}/upvote").status_code == 201
        assert bob_client.post(f"{API}/reviews/{review['id']}/helpful").status_code == 201
        assert bob_client.post(f"{API}/resources/{resource['id']}/increment-usage").get_json()["used_count"] == 1
        assert reputation(db, erin_id) == 17

        listed = bob_client.get(f"{API}/resources/courses/{world.cs260}/flashcards").get_json()
        assert listed["resources"][0]["upvotes"] == 1
        assert listed["resources"][0]["has_upvoted"] is True

        stats = bob_client.get(f"{API}/reviews/courses/{world.cs260}/stats").get_json()["stats"]
        assert stats["review_count"] == 1
        assert stats["average_overall_rating"] == 5

        # Withdrawing a vote drops the counter but keeps the points
        resp = bob_client.delete(f"{API}/resources/{resource['id']}/upvote")
        assert resp.get_json()["upvotes"] == 0
        assert reputation(db, erin_id) == 17

        board = erin.get(f"{API}/analytics/leaderboard").get_json()["leaderboard"]
        assert board[0]["id"] == erin_id
        assert board[0]["reputation"] == 17
        assert erin.get(f"{API}/analytics/rank").get_json()["rank"] == 1

        breakdown = erin.get(f"{API}/users/reputation").get_json()
        assert breakdown["current_reputation"] == 17
        assert breakdown["total_calculated"] == 10 + 5 + 1

        # Bob cannot delete someone else's work
        assert bob_client.delete(f"{API}/resources/{resource['id']}").status_code == 403
        assert erin.delete(f"{API}/resources/{resource['id']}").status_code == 200
        assert erin.delete(f"{API}/reviews/{review['id']}").status_code == 200

        assert db.execute("SELECT COUNT(*) FROM flashcards").fetchone()[0] == 0
        assert db.execute("SELECT COUNT(*) FROM helpful_votes").fetchone()[0] == 0
        assert reputation(db, erin_id) == 17

        actions = {r[0] for r in db.execute("SELECT action FROM audit_log WHERE user_id = ?", (erin_id,))}
        assert {"register", "login_success", "resource_delete", "review_delete"} <= actions
