"""Course catalog: schools, departments, course search and course detail pages."""

from __future__ import annotations

import sqlite3

from db_stores import (
    CourseStoreDB,
    DepartmentStoreDB,
    PairStoreDB,
    ReviewStoreDB,
    SchoolStoreDB,
)
from errors import NotFoundError
from helpers import paginated_response
from lifecycle import summarize_ratings


class CourseCatalog:
    def __init__(self, db: sqlite3.Connection):
        self.db = db
        self.schools = SchoolStoreDB(db)
        self.departments = DepartmentStoreDB(db)
        self.courses = CourseStoreDB(db)
        self.reviews = ReviewStoreDB(db)
        self.saved = PairStoreDB(db, "saved_courses")

    def list_schools(self) -> list[dict]:
        return self.schools.list_all()

    def list_departments(self, school_id: str) -> list[dict]:
        return self.departments.list_for_school(school_id)

    def list_courses(self, school_id: str, department_id: str | None = None, search: str = "",
                     page: int = 1, limit: int = 20) -> dict:
        items, total = self.courses.search(
            school_id, department_id=department_id, query=search.strip(),
            limit=limit, offset=(page - 1) * limit,
        )
        for course in items:
            stats = summarize_ratings(self.reviews.aggregate(course["id"]))
            course["average_overall_rating"] = stats["average_overall_rating"]
        return paginated_response(items, total, page, limit, key="courses")

    def course_details(self, course_id: str, viewer_id: str | None = None) -> dict:
        course = self.courses.get(course_id)
        if course is None:
            raise NotFoundError("Course not found")
        course["school"] = self.schools.get(course["school_id"])
        course.update(summarize_ratings(self.reviews.aggregate(course_id)))
        counts = self.db.execute(
            "SELECT type, COUNT(*) AS n FROM study_resources WHERE course_id = ? GROUP BY type",
            (course_id,),
        ).fetchall()
        by_type = {r["type"]: r["n"] for r in counts}
        course["flashcards_count"] = by_type.get("FLASHCARDS", 0)
        course["notes_count"] = by_type.get("NOTES", 0)
        course["is_saved"] = course_id in self.saved.targets_for(viewer_id, [course_id])
        return course
