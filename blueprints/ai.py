"""AI generation routes: flashcards, study guides, quizzes and note summaries.

Generation results are returned to the caller and never stored.
"""

from __future__ import annotations

from flask import Blueprint, jsonify

from auth import email_verified_required
from database import get_db
from extensions import GenerationManager, limiter
from generation import GenerationService
from helpers import json_body

bp = Blueprint("ai", __name__)


def _service() -> GenerationService:
    return GenerationService(get_db(), GenerationManager.get_client())


@bp.route("/generate-flashcards", methods=["POST"])
@email_verified_required
@limiter.limit("10 per minute")
def generate_flashcards():
    data = json_body()
    return jsonify(_service().generate_flashcards(
        data.get("source_text"),
        course_context=data.get("course_context"),
        exam_tag=data.get("exam_tag"),
        count=data.get("count", 10),
    ))


@bp.route("/resources/<resource_id>/generate-flashcards", methods=["POST"])
@email_verified_required
@limiter.limit("10 per minute")
def generate_flashcards_from_resource(resource_id):
    data = json_body()
    return jsonify(_service().generate_flashcards_from_resource(resource_id, count=data.get("count", 10)))


@bp.route("/generate-study-guide", methods=["POST"])
@email_verified_required
@limiter.limit("10 per minute")
def generate_study_guide():
    data = json_body()
    guide = _service().generate_study_guide(
        data.get("resource_ids"),
        course_context=data.get("course_context"),
        exam_tag=data.get("exam_tag"),
    )
    return jsonify({"study_guide": guide})


@bp.route("/generate-quiz", methods=["POST"])
@email_verified_required
@limiter.limit("10 per minute")
def generate_quiz():
    data = json_body()
    return jsonify(_service().generate_quiz(
        data.get("resource_ids"),
        question_count=data.get("question_count", 10),
        difficulty=data.get("difficulty", "medium"),
        question_types=data.get("question_types"),
    ))


@bp.route("/resources/<resource_id>/summarize", methods=["POST"])
@email_verified_required
@limiter.limit("10 per minute")
def summarize_notes(resource_id):
    data = json_body()
    return jsonify(_service().summarize_notes(resource_id, length=data.get("length", "moderate")))
