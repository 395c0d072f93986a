"""
HTTP Error Handlers
-------------------
JSON error bodies for anything a route does not answer itself.

Routes return their own `{"error": ...}` bodies for expected failures
(404 on a missing generation, 400 on validation). These handlers cover
werkzeug aborts, validation exceptions that escape a route, database
outages and unexpected crashes.

Usage:
    from genstudio.utils.error_handlers import register_error_handlers
    register_error_handlers(app)
"""

from __future__ import annotations

import traceback

from flask import jsonify
from werkzeug.exceptions import HTTPException


def make_error_response(code: str, message: str, status: int, details: dict | None = None):
    """Build the JSON error response used across the API."""
    body = {"error": {"code": code, "message": message}}
    if details:
        body["error"]["details"] = details
    return jsonify(body), status


def handle_http_exception(e: HTTPException):
    code = (e.name or "HTTP_ERROR").upper().replace(" ", "_")
    return make_error_response(code, e.description or e.name, e.code or 500)


def handle_validation_error(e: Exception):
    return make_error_response("INVALID_REQUEST", str(e), 400, getattr(e, "details", None))


def handle_unknown_model(e: Exception):
    from genstudio.services.model_registry import list_models

    return make_error_response(
        "INVALID_REQUEST", str(e), 400, {"availableModels": [spec.name for spec in list_models()]}
    )


def handle_merge_error(e: Exception):
    code = "NOT_FOUND" if e.status == 404 else "INVALID_REQUEST"
    return make_error_response(code, str(e), e.status)


def handle_database_error(e: Exception):
    print(f"[ERROR] Database error: {type(e).__name__}: {e}")
    return make_error_response("DATABASE_UNAVAILABLE", "Database temporarily unavailable", 503)


def handle_internal_error(e: Exception):
    print(f"[ERROR] Unhandled exception: {type(e).__name__}: {e}")
    traceback.print_exc()
    return make_error_response("INTERNAL_ERROR", "Internal server error", 500)


def register_error_handlers(app) -> None:
    """Register global JSON error handlers on the Flask app."""
    from genstudio.db import DatabaseError
    from genstudio.services.generation_service import GenerationValidationError
    from genstudio.services.model_registry import UnknownModelError
    from genstudio.services.video_merge_service import MergeError

    app.register_error_handler(HTTPException, handle_http_exception)
    app.register_error_handler(UnknownModelError, handle_unknown_model)
    app.register_error_handler(GenerationValidationError, handle_validation_error)
    app.register_error_handler(MergeError, handle_merge_error)
    app.register_error_handler(DatabaseError, handle_database_error)
    app.register_error_handler(Exception, handle_internal_error)
