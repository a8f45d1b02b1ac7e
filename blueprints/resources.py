"""Study resource routes: flashcard sets, notes, attachments, upvotes and usage."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from audit import log_event
from auth import email_verified_required
from database import get_db
from extensions import limiter
from helpers import current_user_id, json_body, optional_user_id, paginate_args
from lifecycle import ResourceLifecycleManager, UploadedFile
from voting import VotingEngine

bp = Blueprint("resources", __name__)


def _manager() -> ResourceLifecycleManager:
    return ResourceLifecycleManager.from_config(get_db(), current_app.config)


def _uploads() -> list[UploadedFile]:
    return [
        UploadedFile(f.filename, f.read())
        for f in request.files.getlist("files")
        if f and f.filename
    ]


# ── Course listings ─────────────────────────────────────────

@bp.route("/courses/<course_id>/flashcards")
def list_flashcard_sets(course_id):
    page, limit = paginate_args(default_limit=20)
    return jsonify(_manager().list_flashcard_sets(
        course_id,
        exam_tag=request.args.get("exam_tag"),
        sort=request.args.get("sort", "popular"),
        page=page, limit=limit,
        viewer_id=optional_user_id(),
    ))


@bp.route("/courses/<course_id>/notes")
def list_notes(course_id):
    page, limit = paginate_args(default_limit=20)
    return jsonify(_manager().list_notes(
        course_id,
        exam_tag=request.args.get("exam_tag"),
        sort=request.args.get("sort", "recent"),
        page=page, limit=limit,
        viewer_id=optional_user_id(),
    ))


# ── Create ──────────────────────────────────────────────────

@bp.route("/courses/<course_id>/flashcards", methods=["POST"])
@email_verified_required
def create_flashcard_set(course_id):
    data = json_body()
    resource = _manager().create_flashcard_set(
        current_user_id(), course_id,
        title=data.get("title"),
        cards=data.get("cards"),
        exam_tag=data.get("exam_tag"),
    )
    return jsonify({"message": "Flashcard set created", "resource": resource}), 201


@bp.route("/courses/<course_id>/notes", methods=["POST"])
@email_verified_required
def create_notes(course_id):
    if request.files or request.form:
        title, exam_tag, files = request.form.get("title"), request.form.get("exam_tag"), _uploads()
    else:
        data = json_body()
        title, exam_tag, files = data.get("title"), data.get("exam_tag"), []
    resource = _manager().create_notes_resource(
        current_user_id(), course_id, title=title, exam_tag=exam_tag, files=files,
    )
    return jsonify({"message": "Notes created", "resource": resource}), 201


@bp.route("/<resource_id>/files", methods=["POST"])
@email_verified_required
def add_files(resource_id):
    resource = _manager().add_files(resource_id, current_user_id(), _uploads())
    return jsonify({"message": "Files uploaded", "resource": resource}), 201


@bp.route("/files/<file_id>", methods=["DELETE"])
@login_required
def delete_file(file_id):
    result = _manager().delete_file(file_id, current_user_id())
    log_event("file_delete", current_user_id(), f"file={file_id}")
    return jsonify(result)


# ── Read / update / delete ──────────────────────────────────

@bp.route("/<resource_id>")
def get_resource(resource_id):
    return jsonify({"resource": _manager().get_resource(resource_id, viewer_id=optional_user_id())})


@bp.route("/<resource_id>", methods=["PUT"])
@email_verified_required
def update_resource(resource_id):
    resource = _manager().update_resource(resource_id, current_user_id(), json_body())
    return jsonify({"message": "Resource updated", "resource": resource})


@bp.route("/<resource_id>", methods=["DELETE"])
@login_required
def delete_resource(resource_id):
    result = _manager().delete_resource(resource_id, current_user_id())
    log_event("resource_delete", current_user_id(), f"resource={resource_id}")
    return jsonify(result)


# ── Votes and usage ─────────────────────────────────────────

@bp.route("/<resource_id>/upvote", methods=["POST"])
@login_required
def upvote(resource_id):
    return jsonify(VotingEngine(get_db()).cast_upvote(resource_id, current_user_id())), 201


@bp.route("/<resource_id>/upvote", methods=["DELETE"])
@login_required
def remove_upvote(resource_id):
    return jsonify(VotingEngine(get_db()).remove_upvote(resource_id, current_user_id()))


@bp.route("/<resource_id>/increment-usage", methods=["POST"])
# Every call counts, so usage is never throttled
@limiter.exempt
def increment_usage(resource_id):
    return jsonify(VotingEngine(get_db()).increment_usage(resource_id))
