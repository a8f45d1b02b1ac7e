"""
Study analytics — streaks, leaderboard, rank, weak areas and course insights.

Read-only and computed on demand from the current tables; nothing here is
cached or stored.
"""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, timedelta, timezone
from typing import Iterable

from db_stores import UserStoreDB
from errors import NotFoundError, ValidationError
from helpers import round_half_up
from voting import REPUTATION_AWARDS

LEADERBOARD_WINDOWS = {"week": 7, "month": 30, "all": None}
TRENDING_DAYS = 7
INSIGHT_LIMIT = 5
MINUTES_PER_FLASHCARD = 2


def compute_streaks(dates: Iterable[date], today: date) -> tuple[int, int]:
    """Return (current_streak, longest_streak) for a set of study dates.

    Two dates are consecutive when they are exactly one calendar day apart.
    The current streak only counts if the latest date is today or yesterday.
    """
    ordered = sorted(set(dates), reverse=True)
    if not ordered:
        return 0, 0

    current = 0
    if (today - ordered[0]).days in (0, 1):
        current = 1
        for prev, curr in zip(ordered, ordered[1:]):
            if (prev - curr).days != 1:
                break
            current += 1

    longest = run = 1
    for prev, curr in zip(ordered, ordered[1:]):
        run = run + 1 if (prev - curr).days == 1 else 1
        longest = max(longest, run)

    return current, longest


class StudyAnalytics:
    def __init__(self, db: sqlite3.Connection):
        self.db = db
        self.users = UserStoreDB(db)

    def _user(self, user_id: str) -> dict:
        user = self.users.get(user_id)
        if user is None:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        return user

    # ── Streak ──────────────────────────────────────────────

    def study_streak(self, user_id: str, today: date | None = None) -> dict:
        """Consecutive days with at least one resource created (UTC dates)."""
        today = today or datetime.now(timezone.utc).date()
        rows = self.db.execute(
            "SELECT created_at FROM study_resources WHERE user_id = ? ORDER BY created_at DESC",
            (user_id,),
        ).fetchall()
        if not rows:
            return {"current_streak": 0, "longest_streak": 0, "last_studied": None, "total_study_days": 0}

        dates = {date.fromisoformat(r["created_at"][:10]) for r in rows}
        current, longest = compute_streaks(dates, today)
        return {
            "current_streak": current,
            "longest_streak": longest,
            "last_studied": rows[0]["created_at"],
            "total_study_days": len(dates),
        }

    # ── Leaderboard / rank ──────────────────────────────────

    def leaderboard(self, school_id: str, timeframe: str = "all", limit: int = 10,
                    now: datetime | None = None) -> list[dict]:
        """Top users of a school by reputation.

        week/month restrict to accounts *created* within the window, not to
        recent activity.
        """
        if timeframe not in LEADERBOARD_WINDOWS:
            raise ValidationError("timeframe must be one of week, month, all", "INVALID_TIMEFRAME")

        query = (
            "SELECT u.id, u.name, u.reputation_score AS reputation, "
            "(SELECT COUNT(*) FROM course_reviews cr WHERE cr.user_id = u.id) AS review_count, "
            "(SELECT COUNT(*) FROM study_resources sr WHERE sr.user_id = u.id) AS resource_count "
            "FROM users u WHERE u.school_id = ?"
        )
        params: list = [school_id]
        days = LEADERBOARD_WINDOWS[timeframe]
        if days is not None:
            cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
            query += " AND u.created_at >= ?"
            params.append(cutoff.isoformat())
        query += " ORDER BY u.reputation_score DESC, u.created_at ASC LIMIT ?"
        params.append(limit)

        result = []
        for rank, row in enumerate(self.db.execute(query, params).fetchall(), 1):
            entry = {"rank": rank, **dict(row)}
            entry["total_contributions"] = entry["review_count"] + entry["resource_count"]
            result.append(entry)
        return result

    def user_rank(self, user_id: str) -> dict:
        user = self._user(user_id)
        row = self.db.execute(
            "SELECT COUNT(*) AS total, "
            "SUM(CASE WHEN reputation_score > ? THEN 1 ELSE 0 END) AS above "
            "FROM users WHERE school_id = ?",
            (user["reputation_score"], user["school_id"]),
        ).fetchone()
        total = row["total"]
        rank = (row["above"] or 0) + 1
        return {
            "rank": rank,
            "total_users": total,
            "percentile": round_half_up(100 * (total - rank) / total),
            "reputation": user["reputation_score"],
        }

    # ── Weak areas ──────────────────────────────────────────

    def weak_areas(self, user_id: str) -> dict:
        rows = self.db.execute(
            "SELECT c.id, c.course_code, c.title, "
            "EXISTS (SELECT 1 FROM course_reviews cr WHERE cr.course_id = c.id AND cr.user_id = :u) AS has_review, "
            "(SELECT COUNT(*) FROM study_resources sr WHERE sr.course_id = c.id AND sr.user_id = :u) AS resource_count, "
            "EXISTS (SELECT 1 FROM study_resources sr WHERE sr.course_id = c.id AND sr.user_id = :u "
            "AND sr.used_count > 0) AS has_studied "
            "FROM saved_courses sc JOIN courses c ON c.id = sc.course_id "
            "WHERE sc.user_id = :u ORDER BY sc.created_at DESC",
            {"u": user_id},
        ).fetchall()

        needs_attention = []
        well_studied = []
        for r in rows:
            course = {"id": r["id"], "course_code": r["course_code"], "title": r["title"]}
            if not r["has_review"] and r["resource_count"] == 0:
                needs_attention.append(course)
            if r["has_studied"] and r["resource_count"] > 0:
                well_studied.append({**course, "resource_count": r["resource_count"]})

        return {
            "courses_needing_attention": needs_attention,
            "well_studied_courses": well_studied,
            "total_saved_courses": len(rows),
        }

    # ── Course insights ─────────────────────────────────────

    def course_insights(self, school_id: str, now: datetime | None = None) -> dict:
        counts = (
            "SELECT c.id, c.course_code, c.title, "
            "(SELECT COUNT(*) FROM course_reviews cr WHERE cr.course_id = c.id) AS review_count, "
            "(SELECT COUNT(*) FROM study_resources sr WHERE sr.course_id = c.id) AS resource_count "
            "FROM courses c WHERE c.school_id = ?"
        )
        most_reviewed = self.db.execute(
            f"{counts} ORDER BY review_count DESC, c.course_code LIMIT ?", (school_id, INSIGHT_LIMIT),
        ).fetchall()
        most_resourceful = self.db.execute(
            f"{counts} ORDER BY resource_count DESC, c.course_code LIMIT ?", (school_id, INSIGHT_LIMIT),
        ).fetchall()

        cutoff = ((now or datetime.now(timezone.utc)) - timedelta(days=TRENDING_DAYS)).isoformat()
        trending = self.db.execute(
            f"{counts} AND ("
            "EXISTS (SELECT 1 FROM course_reviews cr WHERE cr.course_id = c.id AND cr.created_at >= ?) "
            "OR EXISTS (SELECT 1 FROM study_resources sr WHERE sr.course_id = c.id AND sr.created_at >= ?)) "
            "ORDER BY review_count + resource_count DESC, c.course_code LIMIT ?",
            (school_id, cutoff, cutoff, INSIGHT_LIMIT),
        ).fetchall()

        def shape(row: sqlite3.Row, key: str) -> dict:
            d = {"id": row["id"], "course_code": row["course_code"], "title": row["title"]}
            if key == "activity_count":
                d[key] = row["review_count"] + row["resource_count"]
            else:
                d[key] = row[key]
            return d

        return {
            "most_reviewed": [shape(r, "review_count") for r in most_reviewed],
            "most_resourceful": [shape(r, "resource_count") for r in most_resourceful],
            "trending": [shape(r, "activity_count") for r in trending],
        }

    # ── Per-user summaries ──────────────────────────────────

    def study_stats(self, user_id: str) -> dict:
        self._user(user_id)
        sets = [dict(r) for r in self.db.execute(
            "SELECT r.id, r.title, r.used_count, r.upvotes, "
            "(SELECT COUNT(*) FROM flashcards f WHERE f.resource_id = r.id) AS flashcard_count "
            "FROM study_resources r WHERE r.user_id = ? AND r.type = 'FLASHCARDS' "
            "ORDER BY r.created_at",
            (user_id,),
        ).fetchall()]
        row = self.db.execute(
            "SELECT "
            "(SELECT COUNT(*) FROM study_resources WHERE user_id = :u AND used_count > 0) AS used, "
            "(SELECT COUNT(*) FROM study_resources WHERE user_id = :u AND type = 'NOTES') AS notes, "
            # Generated quizzes and guides are not stored; estimate from the sources they draw on
            "(SELECT COUNT(*) FROM study_resources WHERE user_id = :u AND type = 'FLASHCARDS' "
            " AND used_count > 0) AS quizzes",
            {"u": user_id},
        ).fetchone()

        total_cards = sum(s["flashcard_count"] for s in sets)
        return {
            "total_flashcards_created": total_cards,
            "total_flashcard_sets": len(sets),
            "total_notes": row["notes"],
            "total_resources_used": row["used"],
            "estimated_study_hours": round_half_up(total_cards * MINUTES_PER_FLASHCARD / 60, 1),
            "quizzes_generated": row["quizzes"],
            "study_guides_generated": row["notes"],
            "most_used_set": max(sets, key=lambda s: s["used_count"], default=None),
            "most_upvoted_set": max(sets, key=lambda s: s["upvotes"], default=None),
        }

    def reputation_breakdown(self, user_id: str) -> dict:
        user = self._user(user_id)
        row = self.db.execute(
            "SELECT "
            "(SELECT COUNT(*) FROM course_reviews WHERE user_id = :u) AS reviews, "
            "(SELECT COUNT(*) FROM helpful_votes hv JOIN course_reviews cr ON cr.id = hv.review_id "
            " WHERE cr.user_id = :u) AS helpful, "
            "(SELECT COUNT(*) FROM study_resources WHERE user_id = :u) AS resources, "
            "(SELECT COUNT(*) FROM resource_upvotes ru JOIN study_resources sr ON sr.id = ru.resource_id "
            " WHERE sr.user_id = :u) AS upvotes",
            {"u": user_id},
        ).fetchone()

        def source(count: int, award: str) -> dict:
            per_item = REPUTATION_AWARDS[award]
            return {"count": count, "per_item": per_item, "points": count * per_item}

        breakdown = {
            "from_reviews": source(row["reviews"], "review_created"),
            "from_helpful_votes": source(row["helpful"], "helpful_vote_received"),
            "from_resources": source(row["resources"], "resource_created"),
            "from_resource_upvotes": source(row["upvotes"], "upvote_received"),
        }
        # Votes later withdrawn still count toward current_reputation, so the
        # two totals can differ.
        return {
            "breakdown": breakdown,
            "total_calculated": sum(b["points"] for b in breakdown.values()),
            "current_reputation": user["reputation_score"],
        }

    def activity_stats(self, user_id: str, now: datetime | None = None) -> dict:
        self._user(user_id)
        cutoff = ((now or datetime.now(timezone.utc)) - timedelta(days=30)).isoformat()
        row = self.db.execute(
            "SELECT "
            "(SELECT COUNT(*) FROM course_reviews WHERE user_id = :u) AS reviews, "
            "(SELECT COUNT(*) FROM study_resources WHERE user_id = :u AND type = 'FLASHCARDS') AS flashcards, "
            "(SELECT COUNT(*) FROM study_resources WHERE user_id = :u AND type = 'NOTES') AS notes, "
            "(SELECT COUNT(*) FROM helpful_votes hv JOIN course_reviews cr ON cr.id = hv.review_id "
            " WHERE cr.user_id = :u) AS helpful, "
            "(SELECT COUNT(*) FROM resource_upvotes ru JOIN study_resources sr ON sr.id = ru.resource_id "
            " WHERE sr.user_id = :u) AS upvotes, "
            "(SELECT COUNT(*) FROM course_reviews WHERE user_id = :u AND created_at >= :cutoff) AS recent",
            {"u": user_id, "cutoff": cutoff},
        ).fetchone()
        return {
            "total_reviews": row["reviews"],
            "total_flashcards": row["flashcards"],
            "total_notes": row["notes"],
            "total_resources": row["flashcards"] + row["notes"],
            "total_helpful_votes_received": row["helpful"],
            "total_upvotes_received": row["upvotes"],
            "recent_activity": row["recent"],
        }
