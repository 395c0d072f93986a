"""Utility helpers for the genstudio backend."""

from .helpers import (
    clamp_int,
    compute_sha256,
    decode_data_uri,
    encode_data_uri,
    format_duration,
    get_content_type_for_extension,
    get_content_type_from_url,
    get_extension_for_content_type,
    is_data_uri,
    is_public_url,
    log_event,
    parse_bool,
    parse_duration_seconds,
    parse_float,
    sanitize_filename,
)

__all__ = [
    "clamp_int",
    "compute_sha256",
    "decode_data_uri",
    "encode_data_uri",
    "format_duration",
    "get_content_type_for_extension",
    "get_content_type_from_url",
    "get_extension_for_content_type",
    "is_data_uri",
    "is_public_url",
    "log_event",
    "parse_bool",
    "parse_duration_seconds",
    "parse_float",
    "sanitize_filename",
]
