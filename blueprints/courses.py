"""School and course catalog routes, plus course bookmarks."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from catalog import CourseCatalog
from database import get_db
from helpers import current_user_id, optional_user_id, paginate_args
from voting import SavedItems

bp = Blueprint("courses", __name__)


@bp.route("/schools")
def list_schools():
    return jsonify({"schools": CourseCatalog(get_db()).list_schools()})


@bp.route("/courses")
@login_required
def list_courses():
    page, limit = paginate_args(default_limit=20)
    return jsonify(CourseCatalog(get_db()).list_courses(
        current_user.school_id,
        department_id=request.args.get("department_id") or None,
        search=request.args.get("search", ""),
        page=page, limit=limit,
    ))


@bp.route("/courses/departments/list")
@login_required
def list_departments():
    return jsonify({"departments": CourseCatalog(get_db()).list_departments(current_user.school_id)})


@bp.route("/courses/saved/list")
@login_required
def saved_courses():
    return jsonify({"courses": SavedItems(get_db()).list_saved_courses(current_user_id())})


@bp.route("/courses/<course_id>")
def course_details(course_id):
    return jsonify({"course": CourseCatalog(get_db()).course_details(course_id, optional_user_id())})


@bp.route("/courses/<course_id>/save", methods=["POST"])
@login_required
def save_course(course_id):
    return jsonify(SavedItems(get_db()).save_course(course_id, current_user_id())), 201


@bp.route("/courses/<course_id>/save", methods=["DELETE"])
@login_required
def unsave_course(course_id):
    return jsonify(SavedItems(get_db()).unsave_course(course_id, current_user_id()))
