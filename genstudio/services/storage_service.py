"""
Durable artifact storage on S3.

Two capabilities matter to the rest of the backend:
- upload bytes (or a URL / data URI) -> durable public URL
- delete by URL, best effort

Keys are content-addressed: {S3_KEY_PREFIX}/{prefix}/{provider}/{sha256}{ext}
so re-uploading the same artifact reuses the existing object.

When AWS_BUCKET_MEDIA is not set, uploads raise StorageUnavailableError and
callers keep the original (transient) URL.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from genstudio.config import config
from genstudio.utils import (
    compute_sha256,
    decode_data_uri,
    get_content_type_from_url,
    get_extension_for_content_type,
    is_data_uri,
    sanitize_filename,
)


class StorageUnavailableError(RuntimeError):
    """Storage is not configured or could not be reached."""
    pass


_client = None
_client_lock = threading.Lock()


def _get_client():
    global _client
    with _client_lock:
        if _client is None:
            _client = boto3.client(
                "s3",
                region_name=config.AWS_REGION,
                aws_access_key_id=config.AWS_ACCESS_KEY_ID or None,
                aws_secret_access_key=config.AWS_SECRET_ACCESS_KEY or None,
            )
        return _client


class S3Storage:
    """S3-backed artifact storage. Safe to share between threads."""

    def __init__(self, bucket: Optional[str] = None, region: Optional[str] = None, key_prefix: Optional[str] = None, client=None):
        self.bucket = bucket if bucket is not None else config.AWS_BUCKET_MEDIA
        self.region = region or config.AWS_REGION
        self.key_prefix = (key_prefix if key_prefix is not None else config.S3_KEY_PREFIX).strip("/")
        self._client = client

    @property
    def client(self):
        return self._client or _get_client()

    def is_configured(self) -> bool:
        return bool(self.bucket)

    # ── Keys and URLs ─────────────────────────────────────────
    def build_key(self, prefix: str, provider: Optional[str], content_hash: str, content_type: str) -> str:
        safe_provider = sanitize_filename(provider or "") or "unknown"
        ext = get_extension_for_content_type(content_type)
        if not ext and prefix in ("images", "thumbnails", "uploads"):
            ext = ".png"
        parts = [p for p in (self.key_prefix, prefix, safe_provider) if p]
        return "/".join(parts) + f"/{content_hash}{ext}"

    def build_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def is_own_url(self, url: Optional[str]) -> bool:
        if not isinstance(url, str) or not self.bucket:
            return False
        host = urlparse(url).hostname or ""
        return host.startswith(f"{self.bucket}.s3.") and host.endswith("amazonaws.com")

    def parse_key(self, url: str) -> Optional[str]:
        if not self.is_own_url(url):
            return None
        return urlparse(url).path.lstrip("/") or None

    def key_exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise

    # ── Uploads ───────────────────────────────────────────────
    def upload_bytes(
        self,
        data: bytes,
        content_type: str,
        prefix: str,
        provider: Optional[str] = None,
    ) -> str:
        """
        Store bytes and return the durable URL.

        Raises:
            StorageUnavailableError: bucket unset or S3 call failed
        """
        if not self.is_configured():
            raise StorageUnavailableError("AWS_BUCKET_MEDIA not configured")

        content_type = (content_type or "application/octet-stream").split(";")[0].strip()
        key = self.build_key(prefix, provider, compute_sha256(data), content_type)
        try:
            if self.key_exists(key):
                print(f"[S3] SKIP: Key exists -> {key}")
                return self.build_url(key)
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailableError(f"S3 upload failed: {e}") from e

        url = self.build_url(key)
        print(f"[S3] SUCCESS: Uploaded {len(data)} bytes -> {url}")
        return url

    def upload_source(self, source: str, prefix: str, provider: Optional[str] = None) -> str:
        """
        Persist a data URI or remote URL. URLs already in our bucket are
        returned untouched.
        """
        if self.is_own_url(source):
            return source
        data, content_type = fetch_source_bytes(source)
        return self.upload_bytes(data, content_type, prefix, provider)

    # ── Deletes ───────────────────────────────────────────────
    def delete_urls(self, urls: Iterable[Optional[str]], source: str = "unknown") -> Dict[str, Any]:
        """
        Delete objects for URLs in our bucket. Never raises.
        URLs that are not ours (provider URLs, data URIs) are skipped.
        """
        keys = []
        for url in urls:
            key = self.parse_key(url) if url else None
            if key and key not in keys:
                keys.append(key)
        return self.delete_keys(keys, source=source)

    def delete_keys(self, keys: List[str], source: str = "unknown") -> Dict[str, Any]:
        result = {
            "deleted": 0,
            "already_missing": 0,
            "errors": [],
            "keys_attempted": len(keys),
        }
        if not keys or not self.is_configured():
            return result

        # 1000 keys per request is the S3 limit
        for i in range(0, len(keys), 1000):
            chunk = [{"Key": key} for key in keys[i: i + 1000]]
            try:
                resp = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": chunk, "Quiet": False},
                )
            except (ClientError, BotoCoreError) as e:
                result["errors"].append({"key": "batch", "code": type(e).__name__, "message": str(e)})
                print(f"[S3] ERROR ({source}): Batch delete failed: {e}")
                continue

            result["deleted"] += len(resp.get("Deleted") or [])
            for err in resp.get("Errors") or []:
                if err.get("Code") == "NoSuchKey":
                    result["already_missing"] += 1
                    continue
                result["errors"].append({
                    "key": err.get("Key", ""),
                    "code": err.get("Code", ""),
                    "message": err.get("Message", ""),
                })
                print(f"[S3] ERROR ({source}): Failed to delete {err.get('Key')}: {err.get('Code')}")

        print(
            f"[S3] Cleanup ({source}): deleted={result['deleted']}, "
            f"already_missing={result['already_missing']}, errors={len(result['errors'])}"
        )
        return result


def fetch_source_bytes(source: str, headers: Optional[Dict[str, str]] = None) -> Tuple[bytes, str]:
    """Bytes and content type for a data URI or URL."""
    if is_data_uri(source):
        return decode_data_uri(source)
    resp = requests.get(source, headers=headers, timeout=120)
    resp.raise_for_status()
    content_type = resp.headers.get("Content-Type") or get_content_type_from_url(source)
    return resp.content, content_type
