"""
Generation Routes Blueprint.
----------------------------
Registered under /api.

- POST   /generations                      - submit (JSON or multipart)
- GET    /generations                      - list, newest first, cursor paged
- GET    /generations/<id>                 - one job
- POST   /generations/<id>/check-status    - poll the provider once now
- POST   /generations/check-all-pending    - run a reconcile sweep in background
- GET    /generations/<id>/video           - redirect (or proxy) to the output
- GET    /generations/<id>/thumbnail       - redirect (or proxy) to the thumbnail
- DELETE /generations/<id>                 - delete record + stored artifacts
- POST   /generations/bulk-delete          - {ids: [...]}
- POST   /generations/construction-stages  - run the construction pipeline
- POST   /generations/merge-videos         - {orderedJobIds: [...]}
- GET    /generations/pipeline/<run_id>    - every job of one pipeline run
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests
from flask import Blueprint, Response, jsonify, redirect, request

from genstudio.routes.uploads import request_payload, store_upload
from genstudio.services.async_dispatch import submit_supervised
from genstudio.services.google_client import get_headers, is_google_hosted
from genstudio.services.job_store import GenerationKind, format_job, page_cursor, parse_cursor
from genstudio.services.media_tools import MediaToolError
from genstudio.services.pipeline_service import PipelineOptions
from genstudio.services.providers.base import ProviderError
from genstudio.services.runtime import get_runtime
from genstudio.services.storage_service import StorageUnavailableError
from genstudio.utils import clamp_int, decode_data_uri, is_data_uri
from genstudio.utils.error_handlers import make_error_response

bp = Blueprint("generations", __name__)

PROXY_TIMEOUT = (5, 60)


def _not_found():
    return make_error_response("NOT_FOUND", "Generation not found", 404)


def _artifact_urls(job: Dict[str, Any]) -> List[str]:
    """Output URLs owned by a job; a thumbnail that is the video itself is listed once."""
    urls = [job.get("video_url"), job.get("image_url")]
    thumb = job.get("thumbnail_url")
    if thumb and thumb not in urls:
        urls.append(thumb)
    return [u for u in urls if u]


# ─────────────────────────────────────────────────────────────
# Submit / read
# ─────────────────────────────────────────────────────────────
@bp.route("/generations", methods=["POST"])
def create_generation():
    """
    Submit a generation. Validation errors (unknown model, unsupported kind,
    missing prompt or media) answer 400 before any job exists.

    Response 201:
    {"success": true, "jobId": "uuid", "status": "in_progress", "data": {...}}
    """
    rt = get_runtime()
    payload = request_payload(rt.storage)
    job = rt.generations.submit(payload)
    return jsonify({
        "success": True,
        "jobId": job["id"],
        "status": job["status"],
        "data": format_job(job),
    }), 201


@bp.route("/generations", methods=["GET"])
def list_generations():
    limit = clamp_int(request.args.get("limit"), 1, 100, 20)
    cursor = parse_cursor(request.args.get("cursor"))
    jobs = get_runtime().store.list_jobs(
        limit=limit,
        cursor=cursor,
        status=request.args.get("status") or None,
        feature=request.args.get("feature") or None,
    )
    has_more, next_cursor = page_cursor(jobs, limit)
    return jsonify({
        "success": True,
        "data": [format_job(j) for j in jobs],
        "pagination": {"limit": limit, "hasMore": has_more, "nextCursor": next_cursor},
    })


@bp.route("/generations/<job_id>", methods=["GET"])
def get_generation(job_id: str):
    job = get_runtime().store.get(job_id)
    if job is None:
        return _not_found()
    return jsonify({"success": True, "data": format_job(job)})


@bp.route("/generations/pipeline/<run_id>", methods=["GET"])
def get_pipeline_run(run_id: str):
    jobs = get_runtime().store.list_by_pipeline(run_id)
    if not jobs:
        return make_error_response("NOT_FOUND", "Pipeline run not found", 404)
    return jsonify({"success": True, "pipelineRunId": run_id, "data": [format_job(j) for j in jobs]})


# ─────────────────────────────────────────────────────────────
# Status
# ─────────────────────────────────────────────────────────────
@bp.route("/generations/<job_id>/check-status", methods=["POST"])
def check_generation_status(job_id: str):
    """One immediate poll. A terminal job comes back exactly as stored."""
    job = get_runtime().reconciler.check_job(job_id)
    if job is None:
        return _not_found()
    return jsonify({"success": True, "data": format_job(job)})


@bp.route("/generations/check-all-pending", methods=["POST"])
def check_all_pending():
    rt = get_runtime()
    submit_supervised(rt.reconciler.sweep, label="check_all_pending", executor=rt.executor)
    return jsonify({"success": True, "message": "Status check started for pending generations"}), 202


# ─────────────────────────────────────────────────────────────
# Media
# ─────────────────────────────────────────────────────────────
def _serve_url(url: Optional[str]):
    if not url:
        return make_error_response("NOT_FOUND", "No media available for this generation", 404)

    if is_data_uri(url):
        data, mime = decode_data_uri(url)
        return Response(data, mimetype=mime, headers={"Cache-Control": "public, max-age=3600"})

    if not is_google_hosted(url):
        return redirect(url, code=302)

    # Google file URIs need the API key, so stream them through
    try:
        r = requests.get(url, headers=get_headers(json_body=False), stream=True, timeout=PROXY_TIMEOUT)
    except requests.RequestException as e:
        print(f"[Generations] proxy failed for {url[:80]}: {e}")
        return make_error_response("UPSTREAM_ERROR", "Failed to fetch media from provider", 502)
    if not r.ok:
        return make_error_response("UPSTREAM_ERROR", f"Provider returned HTTP {r.status_code}", 502)

    headers = {
        "Content-Type": r.headers.get("Content-Type", "application/octet-stream"),
        "Cache-Control": "public, max-age=3600",
    }
    return Response(r.iter_content(chunk_size=8192), status=200, headers=headers)


@bp.route("/generations/<job_id>/video", methods=["GET"])
def generation_video(job_id: str):
    job = get_runtime().store.get(job_id)
    if job is None:
        return _not_found()
    if job.get("generation_type") in GenerationKind.IMAGE_KINDS:
        return _serve_url(job.get("image_url"))
    return _serve_url(job.get("video_url"))


@bp.route("/generations/<job_id>/thumbnail", methods=["GET"])
def generation_thumbnail(job_id: str):
    job = get_runtime().store.get(job_id)
    if job is None:
        return _not_found()
    return _serve_url(job.get("thumbnail_url") or job.get("video_url") or job.get("image_url"))


# ─────────────────────────────────────────────────────────────
# Delete
# ─────────────────────────────────────────────────────────────
@bp.route("/generations/<job_id>", methods=["DELETE"])
def delete_generation(job_id: str):
    rt = get_runtime()
    job = rt.store.get(job_id)
    if job is None:
        return _not_found()

    rt.store.delete(job_id)
    cleanup = rt.storage.delete_urls(_artifact_urls(job), source="delete_generation")
    return jsonify({"success": True, "deleted": job_id, "storage": cleanup})


@bp.route("/generations/bulk-delete", methods=["POST"])
def bulk_delete_generations():
    body = request.get_json(silent=True) or {}
    ids = body.get("ids")
    if not isinstance(ids, list) or not ids:
        return make_error_response("INVALID_REQUEST", "ids must be a non-empty array", 400)

    rt = get_runtime()
    jobs = rt.store.get_many([str(i) for i in ids])
    if not jobs:
        return make_error_response("NOT_FOUND", "No generations found for the given ids", 404)

    deleted = rt.store.delete_many([j["id"] for j in jobs])
    urls: List[str] = []
    for job in jobs:
        urls.extend(_artifact_urls(job))
    cleanup = rt.storage.delete_urls(urls, source="bulk_delete")
    print(f"[Generations] bulk delete requested={len(ids)} deleted={deleted}")
    return jsonify({"success": True, "deletedCount": deleted, "storage": cleanup})


# ─────────────────────────────────────────────────────────────
# Construction pipeline / merge
# ─────────────────────────────────────────────────────────────
@bp.route("/generations/construction-stages", methods=["POST"])
def run_construction_stages():
    """
    Run the construction pipeline synchronously.

    Body (JSON or multipart):
    {
        "referenceImageUrl": "https://...",   # or an "image" file upload
        "modelName": "Nano Banana",
        "videoModelName": "Kling 2.6",
        "aspectRatio": "16:9",
        "basePromptOverride": "...",
        "includeIntermediates": false,
        "generateVideos": true,
        "stitch": true
    }

    200 when every unit succeeded, 207 with the completed units and the
    failure point otherwise.
    """
    rt = get_runtime()
    payload = request_payload(rt.storage)
    reference = payload.get("referenceImageUrl") or payload.get("inputImageUrl")
    if not reference and "image" in request.files:
        reference = store_upload(request.files["image"], rt.storage)
    if not reference:
        return make_error_response("INVALID_REQUEST", "Either referenceImageUrl or an image file is required", 400)

    options = PipelineOptions.from_payload(payload, reference_image_url=reference)
    result = rt.pipeline.run(options)
    return jsonify(result.to_dict()), result.http_status


@bp.route("/generations/merge-videos", methods=["POST"])
def merge_videos():
    body = request.get_json(silent=True) or {}
    ordered = body.get("orderedJobIds")
    if not isinstance(ordered, list):
        return make_error_response("INVALID_REQUEST", "orderedJobIds must be an array", 400)

    rt = get_runtime()
    try:
        job = rt.merger.merge(
            [str(i) for i in ordered],
            pipeline_run_id=body.get("pipelineRunId"),
            prompt=body.get("prompt"),
        )
    except MediaToolError as e:
        return make_error_response("MERGE_FAILED", str(e), 500)
    except StorageUnavailableError as e:
        return make_error_response("STORAGE_UNAVAILABLE", str(e), 503)
    except (requests.RequestException, ProviderError) as e:
        print(f"[Generations] merge source download failed: {type(e).__name__}: {e}")
        return make_error_response("UPSTREAM_ERROR", f"Failed to download a source video: {e}", 502)

    return jsonify({
        "success": True,
        "jobId": job["id"],
        "data": format_job(job),
        "totalDuration": job["duration"],
    }), 201
