"""
Request body helpers shared by the generation routes.

Multipart submissions carry the same fields as JSON in request.form plus
optional media files. Each file is stored in S3 and its URL is written
into the matching payload field; without storage the file is inlined as a
data URI so the providers can still read it.
"""

from __future__ import annotations

import os
from typing import Any, Dict

from flask import request
from werkzeug.datastructures import FileStorage

from genstudio.services.storage_service import S3Storage, StorageUnavailableError
from genstudio.utils import encode_data_uri, get_content_type_for_extension

# form file field -> payload key (first field present wins for a key)
UPLOAD_FIELDS = (
    ("video", "inputVideoUrl"),
    ("image", "inputImageUrl"),
    ("startFrame", "inputImageUrl"),
    ("characterImage", "characterImageUrl"),
    ("endFrame", "endFrameUrl"),
)


def store_upload(upload: FileStorage, storage: S3Storage) -> str:
    data = upload.read()
    ext = os.path.splitext(upload.filename or "")[1]
    content_type = upload.mimetype or get_content_type_for_extension(ext)
    if content_type == "application/octet-stream":
        content_type = get_content_type_for_extension(ext)

    if storage.is_configured():
        try:
            return storage.upload_bytes(data, content_type, prefix="uploads", provider="client")
        except StorageUnavailableError as e:
            print(f"[Uploads] S3 upload failed, inlining {upload.filename}: {e}")
    return encode_data_uri(data, content_type)


def request_payload(storage: S3Storage) -> Dict[str, Any]:
    """JSON body, or form fields + stored uploads for multipart requests."""
    if not request.files and not request.form:
        return request.get_json(silent=True) or {}

    payload: Dict[str, Any] = request.form.to_dict()
    for field_name, key in UPLOAD_FIELDS:
        upload = request.files.get(field_name)
        if upload is None or not upload.filename or payload.get(key):
            continue
        payload[key] = store_upload(upload, storage)
    return payload
