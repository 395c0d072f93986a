"""
Webhook payload parsing.

Accepts two shapes:
- the flat notice: {generation_id | providerJobHandle | task_id, status,
  video_url | artifactUrl, thumbnail_url | thumbnailUrl, error}
- Kling's native callback body: {task_id, task_status, task_status_msg,
  task_result: {videos: [...], images: [...]}}

The route looks the handle up and hands the PollOutcome to the reconciler,
so a webhook goes through exactly the same terminal transition as a poll.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from genstudio.services.kling_service import normalize_kling_task
from genstudio.services.providers.base import PollOutcome

_COMPLETED = ("completed", "succeed", "succeeded", "success")
_FAILED = ("failed", "error")
_PENDING = ("processing", "submitted", "pending", "in_progress")


class WebhookPayloadError(ValueError):
    pass


@dataclass
class WebhookNotice:
    handle: str
    outcome: PollOutcome


def parse_webhook_payload(payload: Any) -> WebhookNotice:
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object")

    handle = payload.get("generation_id") or payload.get("providerJobHandle") or payload.get("task_id")
    if not handle or not isinstance(handle, str):
        raise WebhookPayloadError("Webhook payload has no job handle")

    if "task_status" in payload and "status" not in payload:
        return WebhookNotice(handle=handle, outcome=PollOutcome.from_status(normalize_kling_task(payload)))

    status = str(payload.get("status") or "").lower()
    if status in _COMPLETED:
        artifact = payload.get("video_url") or payload.get("artifactUrl") or payload.get("image_url")
        thumbnail = payload.get("thumbnail_url") or payload.get("thumbnailUrl")
        if not artifact:
            # Nothing to record yet; the poller will pick the result up
            return WebhookNotice(handle=handle, outcome=PollOutcome.pending())
        outcome = PollOutcome.succeeded(video_url=artifact, image_url=artifact, thumbnail_url=thumbnail)
    elif status in _FAILED:
        outcome = PollOutcome.failed(str(payload.get("error") or "Generation failed (reported by provider webhook)"))
    elif status in _PENDING:
        outcome = PollOutcome.pending()
    else:
        raise WebhookPayloadError(f"Unknown webhook status: {payload.get('status')!r}")

    return WebhookNotice(handle=handle, outcome=outcome)


def describe_notice(notice: WebhookNotice) -> Dict[str, Any]:
    """Loggable summary (artifact URLs can be very long signed links)."""
    return {
        "handle": notice.handle,
        "state": notice.outcome.state,
        "has_artifact": bool(notice.outcome.video_url or notice.outcome.image_url),
        "reason": notice.outcome.reason,
    }
