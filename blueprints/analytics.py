"""Analytics routes: streaks, leaderboard, rank, weak areas and course insights."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from database import get_db
from helpers import current_user_id
from study_analytics import StudyAnalytics

bp = Blueprint("analytics", __name__)


@bp.route("/study-stats")
@login_required
def study_stats():
    return jsonify(StudyAnalytics(get_db()).study_stats(current_user_id()))


@bp.route("/streak")
@login_required
def streak():
    return jsonify(StudyAnalytics(get_db()).study_streak(current_user_id()))


@bp.route("/weak-areas")
@login_required
def weak_areas():
    return jsonify(StudyAnalytics(get_db()).weak_areas(current_user_id()))


@bp.route("/rank")
@login_required
def rank():
    return jsonify(StudyAnalytics(get_db()).user_rank(current_user_id()))


@bp.route("/leaderboard")
@login_required
def leaderboard():
    try:
        limit = min(100, max(1, int(request.args.get("limit", 10))))
    except (ValueError, TypeError):
        limit = 10
    timeframe = request.args.get("timeframe", "all")
    entries = StudyAnalytics(get_db()).leaderboard(current_user.school_id, timeframe=timeframe, limit=limit)
    return jsonify({"leaderboard": entries, "timeframe": timeframe})


@bp.route("/course-insights")
@login_required
def course_insights():
    return jsonify(StudyAnalytics(get_db()).course_insights(current_user.school_id))
