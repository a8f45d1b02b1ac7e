"""
Resource lifecycle — flashcard sets, notes and course reviews.

Creation is school-scoped (the author's school must own the course) and awards
reputation in the same transaction as the insert. Mutation and deletion are
owner-only. Deletion cascades through foreign keys and never takes reputation
back.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from werkzeug.utils import secure_filename

from database import new_id, transaction
from db_stores import (
    CourseStoreDB,
    FlashcardStoreDB,
    PairStoreDB,
    ResourceFileStoreDB,
    ResourceStoreDB,
    ReviewStoreDB,
    UserStoreDB,
)
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from extraction import TextExtractor
from helpers import paginated_response, round_half_up
from voting import REPUTATION_AWARDS

logger = logging.getLogger(__name__)

RESOURCE_TYPES = ("FLASHCARDS", "NOTES")
MAX_TITLE_LENGTH = 200

# Trusted ORDER BY fragments, keyed by the public sort name
RESOURCE_SORTS = {
    "FLASHCARDS": {
        "popular": "r.upvotes DESC, r.created_at DESC",
        "recent": "r.created_at DESC",
    },
    "NOTES": {
        "popular": "r.upvotes DESC, r.used_count DESC, r.created_at DESC",
        "recent": "r.created_at DESC",
    },
}
REVIEW_SORTS = {
    "helpful": "cr.helpful_votes DESC, cr.created_at DESC",
    "popular": "cr.helpful_votes DESC, cr.created_at DESC",
    "recent": "cr.created_at DESC",
}

ALLOWED_FILE_TYPES = {
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".md": "text/markdown",
}


@dataclass
class UploadedFile:
    """An upload already read into memory by the HTTP layer."""

    filename: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


def _clean_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title is required")
    title = title.strip()
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
    return title


def _clean_tag(exam_tag: Any) -> str | None:
    if exam_tag is None:
        return None
    if not isinstance(exam_tag, str):
        raise ValidationError("exam_tag must be a string")
    return exam_tag.strip() or None


def _clean_cards(cards: Any, max_cards: int) -> list[dict]:
    if not isinstance(cards, list) or not cards:
        raise ValidationError("At least one flashcard is required")
    if len(cards) > max_cards:
        raise ValidationError(f"A flashcard set can hold at most {max_cards} cards")
    clean = []
    for i, card in enumerate(cards, 1):
        front = card.get("front") if isinstance(card, dict) else None
        back = card.get("back") if isinstance(card, dict) else None
        if not isinstance(front, str) or not front.strip() or not isinstance(back, str) or not back.strip():
            raise ValidationError(f"Flashcard {i} needs a non-empty front and back")
        clean.append({"front": front.strip(), "back": back.strip()})
    return clean


def validate_rating(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        raise ValidationError(f"{name} must be an integer between 1 and 5", "INVALID_RATING")
    return value


def validate_flag(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be true or false")
    return value


def _author_and_course(db: sqlite3.Connection, user_id: str, course_id: str, action: str) -> tuple[dict, dict]:
    """Load both ends of a school-scoped write, enforcing the school match."""
    user = UserStoreDB(db).get(user_id)
    if user is None:
        raise NotFoundError("User not found", "USER_NOT_FOUND")
    course = CourseStoreDB(db).get(course_id)
    if course is None:
        raise NotFoundError("Course not found", "COURSE_NOT_FOUND")
    if course["school_id"] != user["school_id"]:
        raise ForbiddenError(f"Cannot {action} courses from other schools")
    return user, course


class ResourceLifecycleManager:
    """Create, read, list, update and delete study resources."""

    def __init__(self, db: sqlite3.Connection, upload_folder: str | Path | None = None,
                 extractor: TextExtractor | None = None, max_files: int = 10,
                 max_file_bytes: int = 10 * 1024 * 1024, max_cards: int = 500):
        self.db = db
        self.upload_folder = Path(upload_folder) if upload_folder else None
        self.extractor = extractor or TextExtractor()
        self.max_files = max_files
        self.max_file_bytes = max_file_bytes
        self.max_cards = max_cards

        self.resources = ResourceStoreDB(db)
        self.flashcards = FlashcardStoreDB(db)
        self.files = ResourceFileStoreDB(db)
        self.users = UserStoreDB(db)
        self.upvotes = PairStoreDB(db, "resource_upvotes")
        self.saves = PairStoreDB(db, "saved_resources")

    @classmethod
    def from_config(cls, db: sqlite3.Connection, config) -> ResourceLifecycleManager:
        return cls(
            db,
            upload_folder=config.get("UPLOAD_FOLDER"),
            max_files=config.get("MAX_UPLOAD_FILES", 10),
            max_file_bytes=config.get("MAX_UPLOAD_FILE_BYTES", 10 * 1024 * 1024),
            max_cards=config.get("MAX_FLASHCARDS_PER_SET", 500),
        )

    # ── Create ──────────────────────────────────────────────

    def create_flashcard_set(self, user_id: str, course_id: str, title: Any, cards: Any,
                             exam_tag: Any = None) -> dict:
        _author_and_course(self.db, user_id, course_id, "create resources for")
        title = _clean_title(title)
        exam_tag = _clean_tag(exam_tag)
        cards = _clean_cards(cards, self.max_cards)

        with transaction(self.db):
            resource_id = self.resources.insert(user_id, course_id, "FLASHCARDS", title, exam_tag)
            self.flashcards.insert_many(resource_id, cards)
            self.users.add_reputation(user_id, REPUTATION_AWARDS["resource_created"])

        logger.info("flashcard set created id=%s user=%s cards=%d", resource_id, user_id, len(cards))
        return self.get_resource(resource_id, viewer_id=user_id)

    def create_notes_resource(self, user_id: str, course_id: str, title: Any,
                              exam_tag: Any = None, files: Iterable[UploadedFile] = ()) -> dict:
        _author_and_course(self.db, user_id, course_id, "create resources for")
        title = _clean_title(title)
        exam_tag = _clean_tag(exam_tag)
        files = list(files)
        self._validate_files(files)

        stored = self._store_files(files)
        try:
            with transaction(self.db):
                resource_id = self.resources.insert(user_id, course_id, "NOTES", title, exam_tag)
                for upload, stored_name, mime_type, text in stored:
                    self.files.add(resource_id, secure_filename(upload.filename) or stored_name,
                                   stored_name, mime_type, upload.size, text)
                self.users.add_reputation(user_id, REPUTATION_AWARDS["resource_created"])
        except Exception:
            self._remove_stored([s[1] for s in stored])
            raise

        logger.info("notes created id=%s user=%s files=%d", resource_id, user_id, len(stored))
        return self.get_resource(resource_id, viewer_id=user_id)

    def add_files(self, resource_id: str, user_id: str, files: Iterable[UploadedFile]) -> dict:
        """Attach more files to an existing notes resource."""
        resource = self._owned(resource_id, user_id, "upload files to")
        if resource["type"] != "NOTES":
            raise ValidationError("Files can only be attached to notes", "INVALID_TYPE")
        files = list(files)
        if not files:
            raise ValidationError("No files provided", "NO_FILES")
        self._validate_files(files, existing=self.files.count(resource_id))

        stored = self._store_files(files)
        try:
            with transaction(self.db):
                for upload, stored_name, mime_type, text in stored:
                    self.files.add(resource_id, secure_filename(upload.filename) or stored_name,
                                   stored_name, mime_type, upload.size, text)
                self.resources.update_fields(resource_id, {})
        except Exception:
            self._remove_stored([s[1] for s in stored])
            raise
        return self.get_resource(resource_id, viewer_id=user_id)

    def delete_file(self, file_id: str, user_id: str) -> dict:
        row = self.files.get(file_id)
        if row is None:
            raise NotFoundError("File not found")
        if row["user_id"] != user_id:
            raise ForbiddenError("You can only delete your own files")
        with transaction(self.db):
            self.files.delete(file_id)
        self._remove_stored([row["stored_name"]])
        return {"message": "File deleted"}

    # ── Read ────────────────────────────────────────────────

    def get_resource(self, resource_id: str, viewer_id: str | None = None) -> dict:
        resource = self.resources.get(resource_id)
        if resource is None:
            raise NotFoundError("Resource not found")
        if resource["type"] == "FLASHCARDS":
            resource["flashcards"] = self.flashcards.for_resource(resource_id)
        else:
            resource["files"] = self.files.for_resource(resource_id)
        self._annotate_viewer([resource], viewer_id)
        return resource

    def list_flashcard_sets(self, course_id: str, exam_tag: str | None = None, sort: str = "popular",
                            page: int = 1, limit: int = 20, viewer_id: str | None = None) -> dict:
        return self._list(course_id, "FLASHCARDS", exam_tag, sort, page, limit, viewer_id)

    def list_notes(self, course_id: str, exam_tag: str | None = None, sort: str = "recent",
                   page: int = 1, limit: int = 20, viewer_id: str | None = None) -> dict:
        return self._list(course_id, "NOTES", exam_tag, sort, page, limit, viewer_id)

    def list_user_resources(self, user_id: str, type_: str | None = None) -> list[dict]:
        if type_ is not None and type_ not in RESOURCE_TYPES:
            raise ValidationError(f"type must be one of {', '.join(RESOURCE_TYPES)}", "INVALID_TYPE")
        items = self.resources.list_for_user(user_id, type_)
        self._annotate_viewer(items, user_id)
        return items

    def _list(self, course_id: str, type_: str, exam_tag: str | None, sort: str,
              page: int, limit: int, viewer_id: str | None) -> dict:
        order_by = RESOURCE_SORTS[type_].get(sort)
        if order_by is None:
            raise ValidationError("sort must be 'popular' or 'recent'", "INVALID_SORT")
        if CourseStoreDB(self.db).get(course_id) is None:
            raise NotFoundError("Course not found", "COURSE_NOT_FOUND")
        items, total = self.resources.list_for_course(
            course_id, type_, order_by, exam_tag=exam_tag or None,
            limit=limit, offset=(page - 1) * limit,
        )
        self._annotate_viewer(items, viewer_id)
        return paginated_response(items, total, page, limit, key="resources")

    def _annotate_viewer(self, items: list[dict], viewer_id: str | None) -> None:
        ids = [r["id"] for r in items]
        upvoted = self.upvotes.targets_for(viewer_id, ids)
        saved = self.saves.targets_for(viewer_id, ids)
        for r in items:
            r["has_upvoted"] = r["id"] in upvoted
            r["is_saved"] = r["id"] in saved

    # ── Update / delete ─────────────────────────────────────

    def update_resource(self, resource_id: str, user_id: str, patch: dict[str, Any]) -> dict:
        """Patch title/exam_tag; a supplied card list replaces every card of the set."""
        resource = self._owned(resource_id, user_id, "edit")
        fields: dict[str, Any] = {}
        if "title" in patch:
            fields["title"] = _clean_title(patch["title"])
        if "exam_tag" in patch:
            fields["exam_tag"] = _clean_tag(patch["exam_tag"])
        cards = None
        if patch.get("cards") is not None:
            if resource["type"] != "FLASHCARDS":
                raise ValidationError("Only flashcard sets have cards", "INVALID_TYPE")
            cards = _clean_cards(patch["cards"], self.max_cards)

        with transaction(self.db):
            self.resources.update_fields(resource_id, fields)
            if cards is not None:
                self.flashcards.replace(resource_id, cards)

        logger.info("resource updated id=%s fields=%s cards=%s", resource_id, sorted(fields),
                    len(cards) if cards is not None else "-")
        return self.get_resource(resource_id, viewer_id=user_id)

    def delete_resource(self, resource_id: str, user_id: str) -> dict:
        self._owned(resource_id, user_id, "delete")
        stored_names = self.files.stored_names(resource_id)
        with transaction(self.db):
            self.resources.delete(resource_id)
        self._remove_stored(stored_names)
        logger.info("resource deleted id=%s user=%s", resource_id, user_id)
        return {"message": "Resource deleted"}

    def _owned(self, resource_id: str, user_id: str, action: str) -> dict:
        resource = self.resources.get_row(resource_id)
        if resource is None:
            raise NotFoundError("Resource not found")
        if resource["user_id"] != user_id:
            raise ForbiddenError(f"You can only {action} your own resources")
        return resource

    # ── Files on disk ───────────────────────────────────────

    def _validate_files(self, files: list[UploadedFile], existing: int = 0) -> None:
        if existing + len(files) > self.max_files:
            raise ValidationError(f"At most {self.max_files} files per resource", "TOO_MANY_FILES")
        for f in files:
            ext = Path(f.filename or "").suffix.lower()
            if ext not in ALLOWED_FILE_TYPES:
                raise ValidationError(
                    f"{f.filename}: only PDF, TXT and MD files are allowed", "INVALID_FILE_TYPE",
                )
            if f.size > self.max_file_bytes:
                raise ValidationError(
                    f"{f.filename}: file exceeds {self.max_file_bytes // (1024 * 1024)} MB", "FILE_TOO_LARGE",
                )
            if ext == ".pdf" and not f.content.startswith(b"%PDF"):
                raise ValidationError(f"{f.filename}: not a valid PDF", "INVALID_FILE_TYPE")

    def _store_files(self, files: list[UploadedFile]) -> list[tuple[UploadedFile, str, str, str]]:
        """Write uploads to disk and extract their text. Returns (file, stored_name, mime, text)."""
        if not files:
            return []
        if self.upload_folder is None:
            raise ValidationError("File uploads are not configured", "UPLOADS_DISABLED")
        self.upload_folder.mkdir(parents=True, exist_ok=True)

        stored = []
        written: list[str] = []
        try:
            for f in files:
                ext = Path(f.filename).suffix.lower()
                mime_type = ALLOWED_FILE_TYPES[ext]
                stored_name = f"{new_id()}{ext}"
                written.append(stored_name)
                (self.upload_folder / stored_name).write_bytes(f.content)
                text = self.extractor.extract(f.content, mime_type, f.filename)
                stored.append((f, stored_name, mime_type, text))
        except Exception:
            self._remove_stored(written)
            raise
        return stored

    def _remove_stored(self, stored_names: list[str]) -> None:
        if self.upload_folder is None:
            return
        for name in stored_names:
            try:
                (self.upload_folder / name).unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove stored upload %s", name, exc_info=True)


class ReviewLifecycleManager:
    """Course reviews: one per (user, course), owner-edited, +10 reputation on create."""

    RATING_FIELDS = ("workload_rating", "difficulty_rating", "overall_rating")

    def __init__(self, db: sqlite3.Connection):
        self.db = db
        self.reviews = ReviewStoreDB(db)
        self.users = UserStoreDB(db)
        self.helpful = PairStoreDB(db, "helpful_votes")

    def create_review(self, user_id: str, course_id: str, workload_rating: Any,
                      difficulty_rating: Any, overall_rating: Any, review_text: Any,
                      attendance_required: bool = False, exam_style: str | None = None) -> dict:
        ratings = {
            "workload_rating": validate_rating("workload_rating", workload_rating),
            "difficulty_rating": validate_rating("difficulty_rating", difficulty_rating),
            "overall_rating": validate_rating("overall_rating", overall_rating),
        }
        if not isinstance(review_text, str) or not review_text.strip():
            raise ValidationError("review_text is required")
        attendance_required = validate_flag("attendance_required", attendance_required)
        _author_and_course(self.db, user_id, course_id, "review")

        if self.reviews.exists_for(user_id, course_id):
            raise ConflictError("You have already reviewed this course", "ALREADY_REVIEWED", 409)

        try:
            with transaction(self.db):
                review_id = self.reviews.insert(
                    user_id, course_id, ratings, review_text.strip(),
                    attendance_required, exam_style or None,
                )
                self.users.add_reputation(user_id, REPUTATION_AWARDS["review_created"])
        except sqlite3.IntegrityError:
            # Concurrent duplicate caught by UNIQUE(user_id, course_id)
            raise ConflictError("You have already reviewed this course", "ALREADY_REVIEWED", 409)

        logger.info("review created id=%s user=%s course=%s", review_id, user_id, course_id)
        return self.get_review(review_id, viewer_id=user_id)

    def get_review(self, review_id: str, viewer_id: str | None = None) -> dict:
        review = self.reviews.get(review_id)
        if review is None:
            raise NotFoundError("Review not found")
        review["has_voted"] = review_id in self.helpful.targets_for(viewer_id, [review_id])
        return review

    def list_reviews(self, course_id: str, sort: str = "helpful", page: int = 1, limit: int = 10,
                     viewer_id: str | None = None) -> dict:
        order_by = REVIEW_SORTS.get(sort)
        if order_by is None:
            raise ValidationError("sort must be 'helpful' or 'recent'", "INVALID_SORT")
        if CourseStoreDB(self.db).get(course_id) is None:
            raise NotFoundError("Course not found", "COURSE_NOT_FOUND")
        items, total = self.reviews.list_for_course(course_id, order_by, limit, (page - 1) * limit)
        voted = self.helpful.targets_for(viewer_id, [r["id"] for r in items])
        for r in items:
            r["has_voted"] = r["id"] in voted
        return paginated_response(items, total, page, limit, key="reviews")

    def list_user_reviews(self, user_id: str) -> list[dict]:
        return self.reviews.list_for_user(user_id)

    def update_review(self, review_id: str, user_id: str, patch: dict[str, Any]) -> dict:
        self._owned(review_id, user_id, "edit")
        fields: dict[str, Any] = {}
        for name in self.RATING_FIELDS:
            if patch.get(name) is not None:
                fields[name] = validate_rating(name, patch[name])
        if patch.get("review_text") is not None:
            text = patch["review_text"]
            if not isinstance(text, str) or not text.strip():
                raise ValidationError("review_text cannot be empty")
            fields["review_text"] = text.strip()
        if "exam_style" in patch:
            fields["exam_style"] = patch["exam_style"] or None
        if patch.get("attendance_required") is not None:
            fields["attendance_required"] = validate_flag("attendance_required", patch["attendance_required"])

        with transaction(self.db):
            self.reviews.update_fields(review_id, fields)
        return self.get_review(review_id, viewer_id=user_id)

    def delete_review(self, review_id: str, user_id: str) -> dict:
        self._owned(review_id, user_id, "delete")
        with transaction(self.db):
            self.reviews.delete(review_id)
        logger.info("review deleted id=%s user=%s", review_id, user_id)
        return {"message": "Review deleted"}

    def course_stats(self, course_id: str) -> dict:
        if CourseStoreDB(self.db).get(course_id) is None:
            raise NotFoundError("Course not found", "COURSE_NOT_FOUND")
        return summarize_ratings(self.reviews.aggregate(course_id))

    def _owned(self, review_id: str, user_id: str, action: str) -> dict:
        review = self.reviews.get_row(review_id)
        if review is None:
            raise NotFoundError("Review not found")
        if review["user_id"] != user_id:
            raise ForbiddenError(f"You can only {action} your own reviews")
        return review


def summarize_ratings(agg: dict) -> dict:
    """Averages to one decimal and attendance as a whole percent, zeros when unreviewed."""
    total = agg["total"] or 0
    if total == 0:
        return {
            "review_count": 0,
            "average_overall_rating": 0,
            "average_workload_rating": 0,
            "average_difficulty_rating": 0,
            "attendance_required_percent": 0,
        }
    return {
        "review_count": total,
        "average_overall_rating": round_half_up(agg["overall"], 1),
        "average_workload_rating": round_half_up(agg["workload"], 1),
        "average_difficulty_rating": round_half_up(agg["difficulty"], 1),
        "attendance_required_percent": round_half_up(100 * (agg["attendance"] or 0) / total),
    }
