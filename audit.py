"""
Audit logging — records security-relevant events.

Events are written to both the audit_log table and structured logging.
"""

from __future__ import annotations

import logging
import sqlite3

from flask import has_request_context, request

from database import get_db, utcnow

logger = logging.getLogger(__name__)


def log_event(action: str, user_id: str | None = None, detail: str = "") -> None:
    """Insert an audit log entry and emit a structured log line."""
    ip = (request.remote_addr or "") if has_request_context() else ""
    ua = request.headers.get("User-Agent", "") if has_request_context() else ""

    try:
        db = get_db()
        # Inside a unit of work the row commits (or rolls back) with it
        standalone = not db.in_transaction
        db.execute(
            "INSERT INTO audit_log (user_id, action, detail, ip_address, user_agent, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (user_id, action, detail, ip, ua, utcnow()),
        )
        if standalone:
            db.commit()
    except sqlite3.Error:
        # Audit failures never break the request
        logger.warning("audit insert failed for %s", action, exc_info=True)

    logger.info("audit: %s user_id=%s detail=%s ip=%s", action, user_id, detail, ip)
