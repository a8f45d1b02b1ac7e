"""
Voting & reputation engine.

Keeps exactly one vote row per (user, target) and the denormalized counters
(study_resources.upvotes, course_reviews.helpful_votes, used_count) in step with
those rows. Every row change, its counter update and any reputation award run
inside one transaction. Counters are only moved with in-store increments.

Reputation is awarded, never revoked: removing a vote or deleting content
leaves the recipient's score unchanged.
"""

from __future__ import annotations

import logging
import sqlite3

from database import transaction
from db_stores import (
    CourseStoreDB,
    PairStoreDB,
    ResourceStoreDB,
    ReviewStoreDB,
    UserStoreDB,
)
from errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

REPUTATION_AWARDS = {
    "review_created": 10,
    "resource_created": 5,
    "upvote_received": 1,
    "helpful_vote_received": 1,
}


class VotingEngine:
    """Upvotes on resources, helpful votes on reviews, and the usage counter."""

    def __init__(self, db: sqlite3.Connection):
        self.db = db
        self.resources = ResourceStoreDB(db)
        self.reviews = ReviewStoreDB(db)
        self.users = UserStoreDB(db)
        self.upvotes = PairStoreDB(db, "resource_upvotes")
        self.helpful = PairStoreDB(db, "helpful_votes")

    # ── Resource upvotes ────────────────────────────────────

    def cast_upvote(self, resource_id: str, user_id: str) -> dict:
        resource = self.resources.get_row(resource_id)
        if resource is None:
            raise NotFoundError("Resource not found")
        if self.upvotes.exists(user_id, resource_id):
            raise ConflictError("You have already upvoted this resource", "ALREADY_UPVOTED")

        try:
            with transaction(self.db):
                self.upvotes.add(user_id, resource_id)
                self.resources.adjust_upvotes(resource_id, 1)
                self.users.add_reputation(resource["user_id"], REPUTATION_AWARDS["upvote_received"])
        except sqlite3.IntegrityError:
            # Either the resource was deleted meanwhile or a concurrent upvote by the same user won
            if self.resources.get_row(resource_id) is None:
                raise NotFoundError("Resource not found")
            raise ConflictError("You have already upvoted this resource", "ALREADY_UPVOTED")

        logger.info("upvote cast resource=%s user=%s", resource_id, user_id)
        return {"message": "Resource upvoted", "upvotes": self._upvote_count(resource_id)}

    def remove_upvote(self, resource_id: str, user_id: str) -> dict:
        if not self.upvotes.exists(user_id, resource_id):
            raise ConflictError("You have not upvoted this resource", "NOT_UPVOTED")

        with transaction(self.db):
            if self.upvotes.remove(user_id, resource_id) == 0:
                raise ConflictError("You have not upvoted this resource", "NOT_UPVOTED")
            self.resources.adjust_upvotes(resource_id, -1)

        logger.info("upvote removed resource=%s user=%s", resource_id, user_id)
        return {"message": "Upvote removed", "upvotes": self._upvote_count(resource_id)}

    # ── Review helpful votes ────────────────────────────────

    def vote_helpful(self, review_id: str, user_id: str) -> dict:
        review = self.reviews.get_row(review_id)
        if review is None:
            raise NotFoundError("Review not found")
        if review["user_id"] == user_id:
            raise ConflictError("You cannot vote on your own review", "CANNOT_VOTE_OWN")
        if self.helpful.exists(user_id, review_id):
            raise ConflictError("You have already voted this review as helpful", "ALREADY_VOTED")

        try:
            with transaction(self.db):
                self.helpful.add(user_id, review_id)
                self.reviews.adjust_helpful(review_id, 1)
                self.users.add_reputation(review["user_id"], REPUTATION_AWARDS["helpful_vote_received"])
        except sqlite3.IntegrityError:
            if self.reviews.get_row(review_id) is None:
                raise NotFoundError("Review not found")
            raise ConflictError("You have already voted this review as helpful", "ALREADY_VOTED")

        logger.info("helpful vote cast review=%s user=%s", review_id, user_id)
        return {"message": "Marked as helpful", "helpful_votes": self._helpful_count(review_id)}

    def remove_helpful_vote(self, review_id: str, user_id: str) -> dict:
        if not self.helpful.exists(user_id, review_id):
            raise ConflictError("You have not voted this review as helpful", "NOT_VOTED")

        with transaction(self.db):
            if self.helpful.remove(user_id, review_id) == 0:
                raise ConflictError("You have not voted this review as helpful", "NOT_VOTED")
            self.reviews.adjust_helpful(review_id, -1)

        logger.info("helpful vote removed review=%s user=%s", review_id, user_id)
        return {"message": "Helpful vote removed", "helpful_votes": self._helpful_count(review_id)}

    # ── Usage counter ───────────────────────────────────────

    def increment_usage(self, resource_id: str) -> dict:
        """Count one study/view of a resource. Not idempotent: every call counts."""
        with transaction(self.db):
            if self.resources.increment_used(resource_id) == 0:
                raise NotFoundError("Resource not found")
        row = self.resources.get_row(resource_id)
        return {"message": "Usage recorded", "used_count": row["used_count"]}

    def _upvote_count(self, resource_id: str) -> int:
        row = self.resources.get_row(resource_id)
        return row["upvotes"] if row else 0

    def _helpful_count(self, review_id: str) -> int:
        row = self.reviews.get_row(review_id)
        return row["helpful_votes"] if row else 0


class SavedItems:
    """Per-user bookmarks for courses and resources. No counters, no reputation."""

    def __init__(self, db: sqlite3.Connection):
        self.db = db
        self.courses = CourseStoreDB(db)
        self.resources = ResourceStoreDB(db)
        self.saved_courses = PairStoreDB(db, "saved_courses")
        self.saved_resources = PairStoreDB(db, "saved_resources")

    def save_course(self, course_id: str, user_id: str) -> dict:
        if self.courses.get(course_id) is None:
            raise NotFoundError("Course not found")
        self._add(self.saved_courses, user_id, course_id, "Course already saved")
        return {"message": "Course saved"}

    def unsave_course(self, course_id: str, user_id: str) -> dict:
        self._remove(self.saved_courses, user_id, course_id, "Course not saved")
        return {"message": "Course unsaved"}

    def save_resource(self, resource_id: str, user_id: str) -> dict:
        if self.resources.get_row(resource_id) is None:
            raise NotFoundError("Resource not found")
        self._add(self.saved_resources, user_id, resource_id, "Resource already saved")
        return {"message": "Resource saved"}

    def unsave_resource(self, resource_id: str, user_id: str) -> dict:
        self._remove(self.saved_resources, user_id, resource_id, "Resource not saved")
        return {"message": "Resource unsaved"}

    def list_saved_courses(self, user_id: str) -> list[dict]:
        result = []
        for row in self.saved_courses.for_user(user_id):
            course = self.courses.get(row["target_id"])
            if course:
                course["saved_at"] = row["created_at"]
                result.append(course)
        return result

    def list_saved_resources(self, user_id: str) -> list[dict]:
        rows = self.saved_resources.for_user(user_id)
        by_id = {r["id"]: r for r in self.resources.list_by_ids(row["target_id"] for row in rows)}
        upvoted = PairStoreDB(self.db, "resource_upvotes").targets_for(user_id, by_id)
        result = []
        for row in rows:
            resource = by_id.get(row["target_id"])
            if resource:
                resource["saved_at"] = row["created_at"]
                resource["is_saved"] = True
                resource["has_upvoted"] = resource["id"] in upvoted
                result.append(resource)
        return result

    def _add(self, store: PairStoreDB, user_id: str, target_id: str, message: str) -> None:
        if store.exists(user_id, target_id):
            raise ConflictError(message, "ALREADY_SAVED")
        try:
            with transaction(self.db):
                store.add(user_id, target_id)
        except sqlite3.IntegrityError:
            raise ConflictError(message, "ALREADY_SAVED")

    def _remove(self, store: PairStoreDB, user_id: str, target_id: str, message: str) -> None:
        with transaction(self.db):
            if store.remove(user_id, target_id) == 0:
                raise ConflictError(message, "NOT_SAVED")
