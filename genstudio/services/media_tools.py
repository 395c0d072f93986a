"""
ffmpeg / ffprobe helpers for thumbnails, stitching and durations.

All functions work on bytes and use temp files internally; the binaries
must be on PATH. Thumbnail extraction returns None on failure (callers
fall back to the video URL); stitching raises MediaToolError.
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import tempfile
from typing import List, Optional

FFMPEG_TIMEOUT_SECS = 30
CONCAT_TIMEOUT_SECS = 300
DEFAULT_THUMBNAIL_TIMESTAMP = 0.5


class MediaToolError(RuntimeError):
    pass


def ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None


def extract_video_thumbnail(video_bytes: bytes, timestamp_sec: float = DEFAULT_THUMBNAIL_TIMESTAMP) -> Optional[bytes]:
    """
    Extract a JPEG frame from video bytes.

    Args:
        video_bytes: The video file bytes
        timestamp_sec: Time in seconds of the frame (default 0.5)

    Returns:
        JPEG image bytes, or None if extraction fails
    """
    with tempfile.TemporaryDirectory(prefix="genstudio_thumb_") as workdir:
        video_path = os.path.join(workdir, "input.mp4")
        thumb_path = os.path.join(workdir, "thumb.jpg")
        with open(video_path, "wb") as f:
            f.write(video_bytes)

        # -ss before -i for faster seeking
        cmd = [
            "ffmpeg",
            "-y",
            "-ss", str(timestamp_sec),
            "-i", video_path,
            "-vframes", "1",
            "-q:v", "2",
            "-vf", "scale='min(1280,iw)':'-2'",
            thumb_path,
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=FFMPEG_TIMEOUT_SECS)
        except subprocess.TimeoutExpired:
            print("[Thumbnail] ffmpeg timed out")
            return None
        except FileNotFoundError:
            print("[Thumbnail] ffmpeg not installed")
            return None

        if result.returncode != 0:
            print(f"[Thumbnail] ffmpeg failed: {result.stderr.decode('utf-8', errors='ignore')[:200]}")
            return None

        if os.path.exists(thumb_path) and os.path.getsize(thumb_path) > 0:
            with open(thumb_path, "rb") as f:
                thumb_bytes = f.read()
            print(f"[Thumbnail] Extracted {len(thumb_bytes)} bytes at {timestamp_sec}s")
            return thumb_bytes
    return None


def probe_duration(video_bytes: bytes) -> float:
    """Container duration in seconds via ffprobe."""
    with tempfile.TemporaryDirectory(prefix="genstudio_probe_") as workdir:
        video_path = os.path.join(workdir, "input.mp4")
        with open(video_path, "wb") as f:
            f.write(video_bytes)
        cmd = [
            "ffprobe",
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "json",
            video_path,
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=FFMPEG_TIMEOUT_SECS)
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            raise MediaToolError(f"ffprobe failed: {e}") from e
        if result.returncode != 0:
            raise MediaToolError(f"ffprobe failed: {result.stderr.decode('utf-8', errors='ignore')[:200]}")
        try:
            return float(json.loads(result.stdout)["format"]["duration"])
        except (KeyError, ValueError, TypeError) as e:
            raise MediaToolError(f"ffprobe returned no duration: {e}") from e


def concat_videos(videos: List[bytes]) -> bytes:
    """
    Stitch clips in order into one MP4.

    Tries a stream copy first (clips from one provider share codecs) and
    falls back to re-encoding when the copy fails.
    """
    if not videos:
        raise MediaToolError("No videos to concatenate")

    with tempfile.TemporaryDirectory(prefix="genstudio_concat_") as workdir:
        list_path = os.path.join(workdir, "inputs.txt")
        out_path = os.path.join(workdir, "merged.mp4")
        with open(list_path, "w") as listing:
            for i, data in enumerate(videos):
                part = os.path.join(workdir, f"part_{i:03d}.mp4")
                with open(part, "wb") as f:
                    f.write(data)
                listing.write(f"file '{part}'\n")

        base = ["ffmpeg", "-y", "-f", "concat", "-safe", "0", "-i", list_path]
        attempts = [
            base + ["-c", "copy", "-movflags", "+faststart", out_path],
            base + ["-c:v", "libx264", "-preset", "fast", "-crf", "20", "-c:a", "aac",
                    "-movflags", "+faststart", out_path],
        ]
        last_error = ""
        for cmd in attempts:
            try:
                result = subprocess.run(cmd, capture_output=True, timeout=CONCAT_TIMEOUT_SECS)
            except FileNotFoundError as e:
                raise MediaToolError("ffmpeg not installed") from e
            except subprocess.TimeoutExpired:
                last_error = "ffmpeg timed out"
                continue
            if result.returncode == 0 and os.path.exists(out_path) and os.path.getsize(out_path) > 0:
                with open(out_path, "rb") as f:
                    merged = f.read()
                print(f"[Merge] Concatenated {len(videos)} clips -> {len(merged)} bytes")
                return merged
            last_error = result.stderr.decode("utf-8", errors="ignore")[:300]
            print(f"[Merge] ffmpeg attempt failed: {last_error[:200]}")

    raise MediaToolError(f"ffmpeg concat failed: {last_error}")
