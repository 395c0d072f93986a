"""
Model catalogue routes.

- GET /models                 - every registered model with capabilities
- GET /models?category=video  - only video (or image) models
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from genstudio.services.model_registry import list_models

bp = Blueprint("models", __name__)


@bp.route("/models", methods=["GET"])
def get_models():
    category = request.args.get("category") or None
    models = [spec.to_dict() for spec in list_models(category)]
    return jsonify({"success": True, "data": models})
