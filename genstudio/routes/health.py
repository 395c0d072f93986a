"""
Health check routes.
"""

from __future__ import annotations

from flask import Blueprint, jsonify

from genstudio.db import USE_DB, DatabaseError, verify_connection

bp = Blueprint("health", __name__)


@bp.route("/health", methods=["GET"])
def health():
    return jsonify({"ok": True, "db": USE_DB})


@bp.route("/db-check", methods=["GET"])
def db_check():
    if not USE_DB:
        return jsonify({"ok": False, "error": "db_disabled"}), 503
    try:
        if verify_connection():
            return jsonify({"ok": True, "db": "connected"})
    except DatabaseError as e:
        print(f"[DB] db_check failed: {e}")
    return jsonify({"ok": False, "error": "db_query_failed"}), 503
