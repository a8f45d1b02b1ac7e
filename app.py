"""
Campus Study Exchange — Flask JSON API

University-scoped sharing of flashcard sets, notes and course reviews, with
reputation-weighted voting and study analytics.
"""

from __future__ import annotations

import os
from typing import Any

from flask import Flask, Response, jsonify

import database
from auth import auth_bp, login_manager
from blueprints import API_PREFIX, register_blueprints
from config import config_by_name
from errors import register_error_handlers
from extensions import limiter
from logging_config import init_logging

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    # JSON only: nothing may be loaded or framed
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


def _load_config(app: Flask, overrides: dict[str, Any] | None) -> None:
    """Environment class from FLASK_ENV; a dict with TESTING forces the testing class."""
    env = "testing" if overrides and overrides.get("TESTING") else os.environ.get("FLASK_ENV", "development")
    cfg = config_by_name.get(env, config_by_name["development"])
    app.config.from_object(cfg)
    if overrides:
        app.config.update(overrides)
    elif hasattr(cfg, "validate"):
        cfg.validate()


def _harden_responses(app: Flask) -> None:
    @app.after_request
    def set_security_headers(response: Response) -> Response:
        response.headers.update(SECURITY_HEADERS)
        if not app.debug and not app.testing:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)
    _load_config(app, test_config)

    init_logging(app)
    database.init_app(app)
    register_error_handlers(app)

    limiter.init_app(app)
    if app.config.get("TESTING") and not app.config.get("RATELIMIT_ENABLED"):
        limiter.enabled = False

    login_manager.init_app(app)
    app.register_blueprint(auth_bp)
    register_blueprints(app)

    @app.route(f"{API_PREFIX}/health")
    def health():
        database.get_db().execute("SELECT 1").fetchone()
        return jsonify({"status": "ok"})

    _harden_responses(app)
    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=5001)
