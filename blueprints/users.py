"""Current-user routes: profile, own contributions, saved resources, reputation."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from database import get_db
from db_stores import SchoolStoreDB, UserStoreDB
from errors import NotFoundError
from helpers import current_user_id
from lifecycle import ResourceLifecycleManager, ReviewLifecycleManager
from study_analytics import StudyAnalytics
from voting import SavedItems

bp = Blueprint("users", __name__)


@bp.route("/profile")
@login_required
def profile():
    db = get_db()
    users = UserStoreDB(db)
    user = users.get(current_user_id())
    if user is None:
        raise NotFoundError("User not found", "USER_NOT_FOUND")
    user["school"] = SchoolStoreDB(db).get(user["school_id"])
    user["stats"] = users.contribution_counts(user["id"])
    return jsonify({"user": user})


@bp.route("/reviews")
@login_required
def my_reviews():
    return jsonify({"reviews": ReviewLifecycleManager(get_db()).list_user_reviews(current_user_id())})


@bp.route("/resources")
@login_required
def my_resources():
    manager = ResourceLifecycleManager.from_config(get_db(), current_app.config)
    type_ = request.args.get("type")
    return jsonify({"resources": manager.list_user_resources(current_user_id(), type_.upper() if type_ else None)})


@bp.route("/saved/resources")
@login_required
def saved_resources():
    return jsonify({"resources": SavedItems(get_db()).list_saved_resources(current_user_id())})


@bp.route("/resources/<resource_id>/save", methods=["POST"])
@login_required
def save_resource(resource_id):
    return jsonify(SavedItems(get_db()).save_resource(resource_id, current_user_id())), 201


@bp.route("/resources/<resource_id>/save", methods=["DELETE"])
@login_required
def unsave_resource(resource_id):
    return jsonify(SavedItems(get_db()).unsave_resource(resource_id, current_user_id()))


@bp.route("/reputation")
@login_required
def reputation():
    return jsonify(StudyAnalytics(get_db()).reputation_breakdown(current_user_id()))


@bp.route("/stats")
@login_required
def activity_stats():
    return jsonify(StudyAnalytics(get_db()).activity_stats(current_user_id()))
