"""
DB-backed store classes for the study exchange.

Each store wraps one table (or a family of join tables) and is constructed with
an explicit sqlite3 connection. Stores never commit: callers wrap writes in
database.transaction() so that row changes and counter updates land together.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Iterable

from database import new_id, utcnow


def _as_dict(row: sqlite3.Row | None) -> dict | None:
    return dict(row) if row is not None else None


def _author(d: dict) -> dict:
    """Pop the joined author columns into a nested object."""
    return {
        "id": d["user_id"],
        "name": d.pop("author_name", None),
        "reputation_score": d.pop("author_reputation", None),
    }


# ── Schools / Departments / Courses ──────────────────────────────────


class SchoolStoreDB:
    def __init__(self, db: sqlite3.Connection):
        self.db = db

    def get(self, school_id: str) -> dict | None:
        return _as_dict(self.db.execute("SELECT * FROM schools WHERE id = ?", (school_id,)).fetchone())

    def get_by_domain(self, domain: str) -> dict | None:
        return _as_dict(self.db.execute(
            "SELECT * FROM schools WHERE domain = ?", (domain.lower(),),
        ).fetchone())

    def list_all(self) -> list[dict]:
        rows = self.db.execute("SELECT id, name, domain FROM schools ORDER BY name").fetchall()
        return [dict(r) for r in rows]

    def create(self, name: str, domain: str) -> dict:
        school_id = new_id()
        self.db.execute(
            "INSERT INTO schools (id, name, domain, created_at) VALUES (?, ?, ?, ?)",
            (school_id, name, domain.lower(), utcnow()),
        )
        return self.get(school_id)


class DepartmentStoreDB:
    def __init__(self, db: sqlite3.Connection):
        self.db = db

    def create(self, school_id: str, name: str) -> dict:
        dept_id = new_id()
        self.db.execute(
            "INSERT INTO departments (id, school_id, name) VALUES (?, ?, ?)",
            (dept_id, school_id, name),
        )
        return {"id": dept_id, "school_id": school_id, "name": name}

    def get_by_name(self, school_id: str, name: str) -> dict | None:
        return _as_dict(self.db.execute(
            "SELECT * FROM departments WHERE school_id = ? AND name = ?", (school_id, name),
        ).fetchone())

    def list_for_school(self, school_id: str) -> list[dict]:
        rows = self.db.execute(
            "SELECT d.id, d.name, COUNT(c.id) AS course_count "
            "FROM departments d LEFT JOIN courses c ON c.department_id = d.id "
            "WHERE d.school_id = ? GROUP BY d.id ORDER BY d.name",
            (school_id,),
        ).fetchall()
        return [dict(r) for r in rows]


class CourseStoreDB:
    _SELECT = (
        "SELECT c.*, d.name AS department_name, "
        "(SELECT COUNT(*) FROM course_reviews cr WHERE cr.course_id = c.id) AS review_count, "
        "(SELECT COUNT(*) FROM study_resources sr WHERE sr.course_id = c.id) AS resource_count "
        "FROM courses c LEFT JOIN departments d ON d.id = c.department_id"
    )

    def __init__(self, db: sqlite3.Connection):
        self.db = db

    def get(self, course_id: str) -> dict | None:
        return _as_dict(self.db.execute(f"{self._SELECT} WHERE c.id = ?", (course_id,)).fetchone())

    def create(self, school_id: str, department_id: str | None, course_code: str,
               title: str, description: str = "") -> dict:
        course_id = new_id()
        self.db.execute(
            "INSERT INTO courses (id, school_id, department_id, course_code, title, description, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (course_id, school_id, department_id, course_code, title, description, utcnow()),
        )
        return self.get(course_id)

    def search(self, school_id: str, department_id: str | None = None, query: str = "",
               limit: int = 20, offset: int = 0) -> tuple[list[dict], int]:
        """Courses of a school filtered by department and code/title substring."""
        where = " WHERE c.school_id = ?"
        params: list[Any] = [school_id]
        if department_id:
            where += " AND c.department_id = ?"
            params.append(department_id)
        if query:
            where += " AND (c.course_code LIKE ? OR c.title LIKE ?)"
            params.extend([f"%{query}%", f"%{query}%"])

        total = self.db.execute(f"SELECT COUNT(*) FROM courses c{where}", params).fetchone()[0]
        rows = self.db.execute(
            f"{self._SELECT}{where} ORDER BY c.course_code LIMIT ? OFFSET ?",
            [*params, limit, offset],
        ).fetchall()
        return [dict(r) for r in rows], total


# ── Users ────────────────────────────────────────────────────────────


class UserStoreDB:
    _PUBLIC = (
        "id, school_id, name, email, email_verified, reputation_score, created_at"
    )

    def __init__(self, db: sqlite3.Connection):
        self.db = db

    def get(self, user_id: str) -> dict | None:
        row = self.db.execute(f"SELECT {self._PUBLIC} FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        d = dict(row)
        d["email_verified"] = bool(d["email_verified"])
        return d

    def get_auth_row(self, email: str) -> sqlite3.Row | None:
        """Full row including credentials and lockout state, for login only."""
        return self.db.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()

    def email_exists(self, email: str) -> bool:
        return self.db.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone() is not None

    def create(self, school_id: str, name: str, email: str, password_hash: str,
               verification_token: str = "", email_verified: bool = False) -> str:
        user_id = new_id()
        self.db.execute(
            "INSERT INTO users (id, school_id, name, email, password_hash, email_verified, "
            "email_verification_token, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (user_id, school_id, name, email, password_hash, 1 if email_verified else 0,
             verification_token, utcnow()),
        )
        return user_id

    def add_reputation(self, user_id: str, points: int) -> None:
        """Apply a reputation award as an in-store increment."""
        self.db.execute(
            "UPDATE users SET reputation_score = reputation_score + ? WHERE id = ?",
            (points, user_id),
        )

    def verify_email(self, token: str) -> str | None:
        row = self.db.execute(
            "SELECT id FROM users WHERE email_verification_token = ? AND email_verification_token != ''",
            (token,),
        ).fetchone()
        if row is None:
            return None
        self.db.execute(
            "UPDATE users SET email_verified = 1, email_verification_token = '' WHERE id = ?",
            (row["id"],),
        )
        return row["id"]

    def record_failed_login(self, user_id: str, attempts: int, locked_until: str = "") -> None:
        self.db.execute(
            "UPDATE users SET login_attempts = ?, locked_until = ? WHERE id = ?",
            (attempts, locked_until, user_id),
        )

    def reset_login_attempts(self, user_id: str) -> None:
        self.db.execute("UPDATE users SET login_attempts = 0, locked_until = '' WHERE id = ?", (user_id,))

    def contribution_counts(self, user_id: str) -> dict:
        row = self.db.execute(
            "SELECT "
            "(SELECT COUNT(*) FROM course_reviews WHERE user_id = :u) AS review_count, "
            "(SELECT COUNT(*) FROM study_resources WHERE user_id = :u) AS resource_count, "
            "(SELECT COUNT(*) FROM saved_courses WHERE user_id = :u) AS saved_course_count, "
            "(SELECT COUNT(*) FROM saved_resources WHERE user_id = :u) AS saved_resource_count",
            {"u": user_id},
        ).fetchone()
        return dict(row)


# ── Study resources ──────────────────────────────────────────────────


class ResourceStoreDB:
    _SELECT = (
        "SELECT r.*, u.name AS author_name, u.reputation_score AS author_reputation, "
        "c.course_code, c.title AS course_title, c.school_id, "
        "(SELECT COUNT(*) FROM flashcards f WHERE f.resource_id = r.id) AS flashcard_count, "
        "(SELECT COUNT(*) FROM resource_files rf WHERE rf.resource_id = r.id) AS file_count "
        "FROM study_resources r "
        "JOIN users u ON u.id = r.user_id "
        "JOIN courses c ON c.id = r.course_id"
    )

    def __init__(self, db: sqlite3.Connection):
        self.db = db

    @staticmethod
    def to_dict(row: sqlite3.Row) -> dict:
        d = dict(row)
        d["author"] = _author(d)
        d["course"] = {
            "id": d["course_id"],
            "course_code": d.pop("course_code", None),
            "title": d.pop("course_title", None),
        }
        d.pop("school_id", None)
        return d

    def get_row(self, resource_id: str) -> dict | None:
        """Bare table row (no joins), used for ownership and existence checks."""
        return _as_dict(self.db.execute(
            "SELECT * FROM study_resources WHERE id = ?", (resource_id,),
        ).fetchone())

    def get(self, resource_id: str) -> dict | None:
        row = self.db.execute(f"{self._SELECT} WHERE r.id = ?", (resource_id,)).fetchone()
        return self.to_dict(row) if row else None

    def insert(self, user_id: str, course_id: str, type_: str, title: str,
               exam_tag: str | None) -> str:
        resource_id = new_id()
        now = utcnow()
        self.db.execute(
            "INSERT INTO study_resources (id, user_id, course_id, type, title, exam_tag, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (resource_id, user_id, course_id, type_, title, exam_tag, now, now),
        )
        return resource_id

    def update_fields(self, resource_id: str, fields: dict[str, Any]) -> None:
        allowed = {k: v for k, v in fields.items() if k in ("title", "exam_tag")}
        assignments = ", ".join(f"{k} = ?" for k in allowed)
        params = [*allowed.values(), utcnow(), resource_id]
        sep = ", " if assignments else ""
        self.db.execute(
            f"UPDATE study_resources SET {assignments}{sep}updated_at = ? WHERE id = ?", params,
        )

    def delete(self, resource_id: str) -> int:
        return self.db.execute("DELETE FROM study_resources WHERE id = ?", (resource_id,)).rowcount

    def adjust_upvotes(self, resource_id: str, delta: int) -> int:
        return self.db.execute(
            "UPDATE study_resources SET upvotes = upvotes + ? WHERE id = ?", (delta, resource_id),
        ).rowcount

    def increment_used(self, resource_id: str) -> int:
        return self.db.execute(
            "UPDATE study_resources SET used_count = used_count + 1 WHERE id = ?", (resource_id,),
        ).rowcount

    def list_for_course(self, course_id: str, type_: str, order_by: str,
                        exam_tag: str | None = None, limit: int = 20,
                        offset: int = 0) -> tuple[list[dict], int]:
        """Page of a course's resources of one type. order_by must be a trusted SQL fragment."""
        where = " WHERE r.course_id = ? AND r.type = ?"
        params: list[Any] = [course_id, type_]
        if exam_tag:
            where += " AND r.exam_tag = ?"
            params.append(exam_tag)
        total = self.db.execute(
            f"SELECT COUNT(*) FROM study_resources r{where}", params,
        ).fetchone()[0]
        rows = self.db.execute(
            f"{self._SELECT}{where} ORDER BY {order_by} LIMIT ? OFFSET ?",
            [*params, limit, offset],
        ).fetchall()
        return [self.to_dict(r) for r in rows], total

    def list_for_user(self, user_id: str, type_: str | None = None) -> list[dict]:
        query = f"{self._SELECT} WHERE r.user_id = ?"
        params: list[Any] = [user_id]
        if type_:
            query += " AND r.type = ?"
            params.append(type_)
        rows = self.db.execute(query + " ORDER BY r.created_at DESC", params).fetchall()
        return [self.to_dict(r) for r in rows]

    def list_by_ids(self, resource_ids: Iterable[str]) -> list[dict]:
        ids = list(resource_ids)
        if not ids:
            return []
        marks = ", ".join("?" for _ in ids)
        rows = self.db.execute(f"{self._SELECT} WHERE r.id IN ({marks})", ids).fetchall()
        return [self.to_dict(r) for r in rows]


class FlashcardStoreDB:
    def __init__(self, db: sqlite3.Connection):
        self.db = db

    def for_resource(self, resource_id: str) -> list[dict]:
        rows = self.db.execute(
            "SELECT id, front, back, sort_order FROM flashcards WHERE resource_id = ? ORDER BY sort_order",
            (resource_id,),
        ).fetchall()
        return [
            {"id": r["id"], "front": r["front"], "back": r["back"], "order": r["sort_order"]}
            for r in rows
        ]

    def replace(self, resource_id: str, cards: list[dict]) -> None:
        """Delete every card of the set and recreate them with order = position."""
        self.db.execute("DELETE FROM flashcards WHERE resource_id = ?", (resource_id,))
        self.insert_many(resource_id, cards)

    def insert_many(self, resource_id: str, cards: list[dict]) -> None:
        now = utcnow()
        self.db.executemany(
            "INSERT INTO flashcards (id, resource_id, front, back, sort_order, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [(new_id(), resource_id, c["front"], c["back"], i, now) for i, c in enumerate(cards)],
        )


class ResourceFileStoreDB:
    def __init__(self, db: sqlite3.Connection):
        self.db = db

    def add(self, resource_id: str, filename: str, stored_name: str, mime_type: str,
            size_bytes: int, extracted_text: str) -> str:
        file_id = new_id()
        self.db.execute(
            "INSERT INTO resource_files (id, resource_id, filename, stored_name, mime_type, "
            "size_bytes, extracted_text, uploaded_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (file_id, resource_id, filename, stored_name, mime_type, size_bytes, extracted_text, utcnow()),
        )
        return file_id

    def for_resource(self, resource_id: str) -> list[dict]:
        rows = self.db.execute(
            "SELECT id, filename, mime_type, size_bytes, uploaded_at FROM resource_files "
            "WHERE resource_id = ? ORDER BY uploaded_at",
            (resource_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def get(self, file_id: str) -> dict | None:
        """File row joined with its resource's owner and type."""
        return _as_dict(self.db.execute(
            "SELECT rf.*, r.user_id, r.type AS resource_type FROM resource_files rf "
            "JOIN study_resources r ON r.id = rf.resource_id WHERE rf.id = ?",
            (file_id,),
        ).fetchone())

    def delete(self, file_id: str) -> int:
        return self.db.execute("DELETE FROM resource_files WHERE id = ?", (file_id,)).rowcount

    def count(self, resource_id: str) -> int:
        return self.db.execute(
            "SELECT COUNT(*) FROM resource_files WHERE resource_id = ?", (resource_id,),
        ).fetchone()[0]

    def stored_names(self, resource_id: str) -> list[str]:
        rows = self.db.execute(
            "SELECT stored_name FROM resource_files WHERE resource_id = ?", (resource_id,),
        ).fetchall()
        return [r["stored_name"] for r in rows]

    def extracted_text(self, resource_id: str) -> str:
        rows = self.db.execute(
            "SELECT extracted_text FROM resource_files WHERE resource_id = ? ORDER BY uploaded_at",
            (resource_id,),
        ).fetchall()
        return "\n\n".join(r["extracted_text"] for r in rows if r["extracted_text"])


# ── Course reviews ───────────────────────────────────────────────────


class ReviewStoreDB:
    _SELECT = (
        "SELECT cr.*, u.name AS author_name, u.reputation_score AS author_reputation, "
        "c.course_code, c.title AS course_title "
        "FROM course_reviews cr "
        "JOIN users u ON u.id = cr.user_id "
        "JOIN courses c ON c.id = cr.course_id"
    )

    def __init__(self, db: sqlite3.Connection):
        self.db = db

    @staticmethod
    def to_dict(row: sqlite3.Row) -> dict:
        d = dict(row)
        d["attendance_required"] = bool(d["attendance_required"])
        d["author"] = _author(d)
        d["course"] = {
            "id": d["course_id"],
            "course_code": d.pop("course_code", None),
            "title": d.pop("course_title", None),
        }
        return d

    def get_row(self, review_id: str) -> dict | None:
        return _as_dict(self.db.execute(
            "SELECT * FROM course_reviews WHERE id = ?", (review_id,),
        ).fetchone())

    def get(self, review_id: str) -> dict | None:
        row = self.db.execute(f"{self._SELECT} WHERE cr.id = ?", (review_id,)).fetchone()
        return self.to_dict(row) if row else None

    def exists_for(self, user_id: str, course_id: str) -> bool:
        return self.db.execute(
            "SELECT 1 FROM course_reviews WHERE user_id = ? AND course_id = ?", (user_id, course_id),
        ).fetchone() is not None

    def insert(self, user_id: str, course_id: str, ratings: dict[str, int], review_text: str,
               attendance_required: bool, exam_style: str | None) -> str:
        review_id = new_id()
        now = utcnow()
        self.db.execute(
            "INSERT INTO course_reviews (id, user_id, course_id, workload_rating, difficulty_rating, "
            "overall_rating, exam_style, attendance_required, review_text, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (review_id, user_id, course_id, ratings["workload_rating"], ratings["difficulty_rating"],
             ratings["overall_rating"], exam_style, 1 if attendance_required else 0,
             review_text, now, now),
        )
        return review_id

    def update_fields(self, review_id: str, fields: dict[str, Any]) -> None:
        columns = (
            "workload_rating", "difficulty_rating", "overall_rating",
            "exam_style", "attendance_required", "review_text",
        )
        allowed = {k: v for k, v in fields.items() if k in columns}
        if "attendance_required" in allowed:
            allowed["attendance_required"] = 1 if allowed["attendance_required"] else 0
        assignments = "".join(f"{k} = ?, " for k in allowed)
        self.db.execute(
            f"UPDATE course_reviews SET {assignments}updated_at = ? WHERE id = ?",
            [*allowed.values(), utcnow(), review_id],
        )

    def delete(self, review_id: str) -> int:
        return self.db.execute("DELETE FROM course_reviews WHERE id = ?", (review_id,)).rowcount

    def adjust_helpful(self, review_id: str, delta: int) -> int:
        return self.db.execute(
            "UPDATE course_reviews SET helpful_votes = helpful_votes + ? WHERE id = ?",
            (delta, review_id),
        ).rowcount

    def list_for_course(self, course_id: str, order_by: str, limit: int = 10,
                        offset: int = 0) -> tuple[list[dict], int]:
        total = self.db.execute(
            "SELECT COUNT(*) FROM course_reviews WHERE course_id = ?", (course_id,),
        ).fetchone()[0]
        rows = self.db.execute(
            f"{self._SELECT} WHERE cr.course_id = ? ORDER BY {order_by} LIMIT ? OFFSET ?",
            (course_id, limit, offset),
        ).fetchall()
        return [self.to_dict(r) for r in rows], total

    def list_for_user(self, user_id: str) -> list[dict]:
        rows = self.db.execute(
            f"{self._SELECT} WHERE cr.user_id = ? ORDER BY cr.created_at DESC", (user_id,),
        ).fetchall()
        return [self.to_dict(r) for r in rows]

    def aggregate(self, course_id: str) -> dict:
        row = self.db.execute(
            "SELECT COUNT(*) AS total, AVG(workload_rating) AS workload, "
            "AVG(difficulty_rating) AS difficulty, AVG(overall_rating) AS overall, "
            "SUM(attendance_required) AS attendance "
            "FROM course_reviews WHERE course_id = ?",
            (course_id,),
        ).fetchone()
        return dict(row)


# ── Join tables: votes and saves ─────────────────────────────────────


class PairStoreDB:
    """One (user, target) join table: presence of the row is the vote or save."""

    TABLES = {
        "resource_upvotes": "resource_id",
        "helpful_votes": "review_id",
        "saved_courses": "course_id",
        "saved_resources": "resource_id",
    }

    def __init__(self, db: sqlite3.Connection, table: str):
        if table not in self.TABLES:
            raise ValueError(f"Unknown join table: {table}")
        self.db = db
        self.table = table
        self.target_col = self.TABLES[table]

    def exists(self, user_id: str, target_id: str) -> bool:
        return self.db.execute(
            f"SELECT 1 FROM {self.table} WHERE user_id = ? AND {self.target_col} = ?",
            (user_id, target_id),
        ).fetchone() is not None

    def add(self, user_id: str, target_id: str) -> None:
        """Insert the pair. Raises sqlite3.IntegrityError if it already exists."""
        self.db.execute(
            f"INSERT INTO {self.table} (user_id, {self.target_col}, created_at) VALUES (?, ?, ?)",
            (user_id, target_id, utcnow()),
        )

    def remove(self, user_id: str, target_id: str) -> int:
        return self.db.execute(
            f"DELETE FROM {self.table} WHERE user_id = ? AND {self.target_col} = ?",
            (user_id, target_id),
        ).rowcount

    def targets_for(self, user_id: str | None, target_ids: Iterable[str]) -> set[str]:
        """Which of target_ids this user has a row for. Empty for anonymous viewers."""
        ids = list(target_ids)
        if not user_id or not ids:
            return set()
        marks = ", ".join("?" for _ in ids)
        rows = self.db.execute(
            f"SELECT {self.target_col} FROM {self.table} "
            f"WHERE user_id = ? AND {self.target_col} IN ({marks})",
            [user_id, *ids],
        ).fetchall()
        return {r[0] for r in rows}

    def for_user(self, user_id: str) -> list[dict]:
        """All rows of one user, newest first."""
        rows = self.db.execute(
            f"SELECT {self.target_col} AS target_id, created_at FROM {self.table} "
            f"WHERE user_id = ? ORDER BY created_at DESC",
            (user_id,),
        ).fetchall()
        return [dict(r) for r in rows]
