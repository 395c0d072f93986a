"""
Webhook Routes Blueprint.
-------------------------
Registered under /api.

- POST /webhooks/kling        - Kling task callbacks (flat or native body)
- POST /webhooks/<provider>   - same receiver for any other provider

The terminal write happens before the response; the durable upload runs
in a supervised background task afterwards, so the provider gets its ack
without waiting on S3.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from genstudio.services.runtime import get_runtime
from genstudio.services.webhook_service import WebhookPayloadError, describe_notice, parse_webhook_payload
from genstudio.utils import log_event

bp = Blueprint("webhooks", __name__)


def _receive(provider: str):
    payload = request.get_json(silent=True)
    try:
        notice = parse_webhook_payload(payload)
    except WebhookPayloadError as e:
        print(f"[Webhook] {provider}: rejected payload: {e}")
        return jsonify({"error": str(e)}), 400

    summary = describe_notice(notice)
    print(f"[Webhook] {provider}: handle={notice.handle} state={summary['state']}")
    log_event("webhook_received", {"provider": provider, **summary})

    result = get_runtime().reconciler.handle_webhook_notice(notice.handle, notice.outcome, background=True)
    if result is None:
        print(f"[Webhook] {provider}: no generation for handle={notice.handle}")
        return jsonify({"error": "Generation not found"}), 404

    return jsonify({"ack": True, "success": True, "result": result})


@bp.route("/webhooks/kling", methods=["POST"])
def kling_webhook():
    return _receive("kling")


@bp.route("/webhooks/<provider>", methods=["POST"])
def provider_webhook(provider: str):
    return _receive(provider)
