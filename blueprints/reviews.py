"""Course review routes, helpful votes and per-course rating stats."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from audit import log_event
from auth import email_verified_required
from database import get_db
from helpers import current_user_id, json_body, optional_user_id, paginate_args
from lifecycle import ReviewLifecycleManager
from voting import VotingEngine

bp = Blueprint("reviews", __name__)


@bp.route("/courses/<course_id>/reviews")
def list_reviews(course_id):
    page, limit = paginate_args(default_limit=10)
    return jsonify(ReviewLifecycleManager(get_db()).list_reviews(
        course_id, sort=request.args.get("sort", "helpful"),
        page=page, limit=limit, viewer_id=optional_user_id(),
    ))


@bp.route("/courses/<course_id>/stats")
def course_stats(course_id):
    return jsonify({"stats": ReviewLifecycleManager(get_db()).course_stats(course_id)})


@bp.route("/courses/<course_id>/reviews", methods=["POST"])
@email_verified_required
def create_review(course_id):
    data = json_body()
    review = ReviewLifecycleManager(get_db()).create_review(
        current_user_id(), course_id,
        workload_rating=data.get("workload_rating"),
        difficulty_rating=data.get("difficulty_rating"),
        overall_rating=data.get("overall_rating"),
        review_text=data.get("review_text"),
        attendance_required=data.get("attendance_required", False),
        exam_style=data.get("exam_style"),
    )
    return jsonify({"message": "Review created", "review": review}), 201


@bp.route("/<review_id>")
def get_review(review_id):
    return jsonify({"review": ReviewLifecycleManager(get_db()).get_review(review_id, optional_user_id())})


@bp.route("/<review_id>", methods=["PUT"])
@email_verified_required
def update_review(review_id):
    review = ReviewLifecycleManager(get_db()).update_review(review_id, current_user_id(), json_body())
    return jsonify({"message": "Review updated", "review": review})


@bp.route("/<review_id>", methods=["DELETE"])
@login_required
def delete_review(review_id):
    result = ReviewLifecycleManager(get_db()).delete_review(review_id, current_user_id())
    log_event("review_delete", current_user_id(), f"review={review_id}")
    return jsonify(result)


@bp.route("/<review_id>/helpful", methods=["POST"])
@login_required
def vote_helpful(review_id):
    return jsonify(VotingEngine(get_db()).vote_helpful(review_id, current_user_id())), 201


@bp.route("/<review_id>/helpful", methods=["DELETE"])
@login_required
def remove_helpful_vote(review_id):
    return jsonify(VotingEngine(get_db()).remove_helpful_vote(review_id, current_user_id()))
