"""
Seed Demo Data — standalone script and `flask seed-demo` command.

Creates two schools with departments and courses, verified demo students at
each school, and a little shared content (a flashcard set, a review and an
upvote) created through the lifecycle and voting engines so counters and
reputation stay consistent. Safe to run repeatedly.

Usage:
    python seed_demo_data.py           # Seed into the configured database
    python seed_demo_data.py --reset   # Clear demo users and their content first
"""

from __future__ import annotations

import sys

from werkzeug.security import generate_password_hash

from database import transaction
from db_stores import CourseStoreDB, DepartmentStoreDB, SchoolStoreDB, UserStoreDB
from lifecycle import ResourceLifecycleManager, ReviewLifecycleManager
from voting import VotingEngine

DEMO_PASSWORD = "DemoPass123"

DEMO_SCHOOLS = [
    {
        "name": "Drexel University", "domain": "drexel.edu",
        "departments": {
            "Computer Science": [
                ("CS 171", "Computer Programming I"),
                ("CS 260", "Data Structures"),
                ("CS 265", "Advanced Programming Tools and Techniques"),
            ],
            "Mathematics": [
                ("MATH 121", "Calculus I"),
                ("MATH 201", "Linear Algebra"),
            ],
        },
    },
    {
        "name": "Temple University", "domain": "temple.edu",
        "departments": {
            "Biology": [
                ("BIO 1111", "Introduction to Biology"),
                ("BIO 2112", "Cell Structure and Function"),
            ],
        },
    },
]

DEMO_STUDENTS = [
    {"name": "Alice Chen", "email": "alice@drexel.edu"},
    {"name": "Bob Tanaka", "email": "bob@drexel.edu"},
    {"name": "Clara Schmidt", "email": "clara@temple.edu"},
]

DEMO_CARDS = [
    {"front": "What is a stack?", "back": "A LIFO collection supporting push and pop."},
    {"front": "What is a queue?", "back": "A FIFO collection supporting enqueue and dequeue."},
    {"front": "Big-O of binary search?", "back": "O(log n) on a sorted array."},
]


def seed(db) -> dict:
    """Seed demo data into the database. Returns summary dict."""
    schools = SchoolStoreDB(db)
    departments = DepartmentStoreDB(db)
    courses = CourseStoreDB(db)
    users = UserStoreDB(db)
    created = {"schools": 0, "courses": 0, "users": 0, "resources": 0, "reviews": 0}

    with transaction(db):
        for entry in DEMO_SCHOOLS:
            school = schools.get_by_domain(entry["domain"])
            if school is None:
                school = schools.create(entry["name"], entry["domain"])
                created["schools"] += 1
            for dept_name, course_list in entry["departments"].items():
                dept = departments.get_by_name(school["id"], dept_name) or departments.create(school["id"], dept_name)
                for code, title in course_list:
                    exists = db.execute(
                        "SELECT 1 FROM courses WHERE school_id = ? AND course_code = ?", (school["id"], code),
                    ).fetchone()
                    if not exists:
                        courses.create(school["id"], dept["id"], code, title)
                        created["courses"] += 1

        password = generate_password_hash(DEMO_PASSWORD)
        for student in DEMO_STUDENTS:
            if users.email_exists(student["email"]):
                continue
            school = schools.get_by_domain(student["email"].split("@", 1)[1])
            users.create(school["id"], student["name"], student["email"], password, email_verified=True)
            created["users"] += 1

    alice = users.get_auth_row("alice@drexel.edu")
    bob = users.get_auth_row("bob@drexel.edu")
    has_content = db.execute(
        "SELECT 1 FROM study_resources WHERE user_id = ?", (alice["id"],),
    ).fetchone()
    if not has_content:
        cs260 = db.execute("SELECT id FROM courses WHERE course_code = 'CS 260'").fetchone()
        resource = ResourceLifecycleManager(db).create_flashcard_set(
            alice["id"], cs260["id"], "Data structures basics", DEMO_CARDS, exam_tag="Midterm",
        )
        created["resources"] += 1
        ReviewLifecycleManager(db).create_review(
            bob["id"], cs260["id"], workload_rating=4, difficulty_rating=3, overall_rating=5,
            review_text="Great course, weekly labs keep you on track.", attendance_required=True,
            exam_style="Written midterm and final",
        )
        created["reviews"] += 1
        VotingEngine(db).cast_upvote(resource["id"], bob["id"])

    return created


def clear_demo(db) -> None:
    """Remove demo users; their content cascades with them."""
    emails = [s["email"] for s in DEMO_STUDENTS]
    placeholders = ",".join("?" * len(emails))
    with transaction(db):
        db.execute(f"DELETE FROM users WHERE email IN ({placeholders})", emails)


if __name__ == "__main__":
    from app import create_app
    from database import get_db, init_db, run_migrations

    app = create_app()
    with app.app_context():
        init_db()
        run_migrations()
        db = get_db()
        if "--reset" in sys.argv:
            clear_demo(db)
            print("[Seed] Demo data cleared.")
        result = seed(db)
        print(f"[Seed] Done: {result}")
