"""
Blueprint registration for the study exchange API.

Every blueprint is mounted under the versioned /api/v1 prefix.
"""

from __future__ import annotations

API_PREFIX = "/api/v1"


def register_blueprints(app):
    from blueprints.ai import bp as ai_bp
    from blueprints.analytics import bp as analytics_bp
    from blueprints.courses import bp as courses_bp
    from blueprints.resources import bp as resources_bp
    from blueprints.reviews import bp as reviews_bp
    from blueprints.users import bp as users_bp

    app.register_blueprint(courses_bp, url_prefix=API_PREFIX)
    app.register_blueprint(resources_bp, url_prefix=f"{API_PREFIX}/resources")
    app.register_blueprint(reviews_bp, url_prefix=f"{API_PREFIX}/reviews")
    app.register_blueprint(users_bp, url_prefix=f"{API_PREFIX}/users")
    app.register_blueprint(analytics_bp, url_prefix=f"{API_PREFIX}/analytics")
    app.register_blueprint(ai_bp, url_prefix=f"{API_PREFIX}/ai")
