"""
Configuration module for the genstudio backend.
Centralizes all environment variables and settings.

Render Compatibility:
- Handles Render's DATABASE_URL format (postgres:// -> postgresql://)
- Uses Render's PORT env var

Usage:
    from genstudio.config import config

    if config.KLING_CONFIGURED:
        print("Kling is ready")

    interval = config.RECONCILE_INTERVAL_SECS
"""

import os
from pathlib import Path
from typing import List
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load .env file (safe - won't override existing env vars)
load_dotenv()


def _get_env(key: str, default: str = "") -> str:
    """Safely get and strip an environment variable."""
    return os.getenv(key, default).strip()


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get an environment variable as boolean."""
    val = _get_env(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int = 0) -> int:
    """Get an environment variable as integer."""
    try:
        return int(_get_env(key, str(default)))
    except ValueError:
        return default


def _get_env_float(key: str, default: float = 0.0) -> float:
    """Get an environment variable as float."""
    try:
        return float(_get_env(key, str(default)))
    except ValueError:
        return default


def _get_env_list(key: str, default: List[str] = None) -> List[str]:
    """Get a comma-separated environment variable as list."""
    val = _get_env(key, "")
    if not val:
        return default or []
    return [item.strip() for item in val.split(",") if item.strip()]


def _fix_render_database_url(url: str) -> str:
    """
    Fix Render's DATABASE_URL format.
    Render uses 'postgres://' but psycopg3 requires 'postgresql://'.
    """
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _strip_version_suffix(url: str) -> str:
    """Kling base URLs are sometimes pasted with a trailing /v1 or /v2."""
    url = (url or "").rstrip("/")
    for suffix in ("/v1", "/v2"):
        if url.endswith(suffix):
            url = url[: -len(suffix)]
    return url


@dataclass
class Config:
    """
    Application configuration with all settings.
    Loaded from environment variables with sensible defaults.
    """

    # ─────────────────────────────────────────────────────────────
    # Paths
    # ─────────────────────────────────────────────────────────────
    APP_DIR: Path = field(default_factory=lambda: Path(__file__).resolve().parent)

    # ─────────────────────────────────────────────────────────────
    # Environment
    # ─────────────────────────────────────────────────────────────
    FLASK_ENV: str = field(default_factory=lambda: _get_env("FLASK_ENV", "production").lower())

    @property
    def IS_DEV(self) -> bool:
        """
        True if running in development mode.
        Auto-detects local development when FLASK_ENV is not explicitly set.
        """
        if self.FLASK_ENV in ("development", "dev", "local"):
            return True
        if _get_env("FLASK_ENV"):
            return False
        return not self.IS_RENDER

    @property
    def IS_PROD(self) -> bool:
        """True if running in production mode."""
        return not self.IS_DEV

    @property
    def IS_RENDER(self) -> bool:
        """True if running on Render.com."""
        return bool(_get_env("RENDER"))

    # ─────────────────────────────────────────────────────────────
    # Server
    # ─────────────────────────────────────────────────────────────
    PORT: int = field(default_factory=lambda: _get_env_int("PORT", 5001))
    HOST: str = field(default_factory=lambda: _get_env("HOST", "0.0.0.0"))

    _ALLOWED_ORIGINS_RAW: str = field(default_factory=lambda: _get_env("ALLOWED_ORIGINS"))

    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        """CORS origins; empty list in dev means localhost defaults."""
        return _get_env_list("ALLOWED_ORIGINS")

    @property
    def ALLOW_ALL_ORIGINS(self) -> bool:
        return self._ALLOWED_ORIGINS_RAW == "*"

    # ─────────────────────────────────────────────────────────────
    # Database
    # ─────────────────────────────────────────────────────────────
    _DATABASE_URL_RAW: str = field(default_factory=lambda: _get_env("DATABASE_URL"))

    @property
    def DATABASE_URL(self) -> str:
        """Database connection URL (fixed for psycopg3 compatibility)."""
        return _fix_render_database_url(self._DATABASE_URL_RAW)

    @property
    def HAS_DATABASE(self) -> bool:
        """True if database URL is configured."""
        return bool(self._DATABASE_URL_RAW)

    APP_SCHEMA: str = field(default_factory=lambda: _get_env("APP_SCHEMA", "genstudio_app"))
    DB_CONNECT_TIMEOUT: int = field(default_factory=lambda: _get_env_int("DB_CONNECT_TIMEOUT", 5))

    # ─────────────────────────────────────────────────────────────
    # Google (Veo, Imagen, Gemini image)
    # ─────────────────────────────────────────────────────────────
    GEMINI_API_KEY: str = field(
        default_factory=lambda: _get_env("GEMINI_API_KEY") or _get_env("GOOGLE_API_KEY")
    )
    GOOGLE_API_BASE: str = field(
        default_factory=lambda: _get_env(
            "GOOGLE_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
        ).rstrip("/")
    )

    @property
    def GOOGLE_CONFIGURED(self) -> bool:
        return bool(self.GEMINI_API_KEY)

    # ─────────────────────────────────────────────────────────────
    # Kling
    # ─────────────────────────────────────────────────────────────
    KLING_ACCESS_KEY: str = field(default_factory=lambda: _get_env("KLING_ACCESS_KEY"))
    KLING_SECRET_KEY: str = field(default_factory=lambda: _get_env("KLING_SECRET_KEY"))
    # Static bearer token, used when the access/secret pair is absent
    KLING_API_KEY: str = field(default_factory=lambda: _get_env("KLING_API_KEY"))
    KLING_API_BASE_URL: str = field(
        default_factory=lambda: _strip_version_suffix(
            _get_env("KLING_API_BASE_URL", "https://api.klingai.com")
        )
    )
    KLING_CALLBACK_URL: str = field(default_factory=lambda: _get_env("KLING_CALLBACK_URL"))

    @property
    def KLING_CONFIGURED(self) -> bool:
        return bool((self.KLING_ACCESS_KEY and self.KLING_SECRET_KEY) or self.KLING_API_KEY)

    # ─────────────────────────────────────────────────────────────
    # AWS S3 (durable artifact storage)
    # ─────────────────────────────────────────────────────────────
    AWS_REGION: str = field(default_factory=lambda: _get_env("AWS_REGION", "eu-west-2"))
    AWS_BUCKET_MEDIA: str = field(default_factory=lambda: _get_env("AWS_BUCKET_MEDIA"))
    AWS_ACCESS_KEY_ID: str = field(default_factory=lambda: _get_env("AWS_ACCESS_KEY_ID"))
    AWS_SECRET_ACCESS_KEY: str = field(default_factory=lambda: _get_env("AWS_SECRET_ACCESS_KEY"))
    S3_KEY_PREFIX: str = field(default_factory=lambda: _get_env("S3_KEY_PREFIX", "genstudio"))

    @property
    def AWS_CONFIGURED(self) -> bool:
        """True if uploads to S3 can be attempted."""
        return bool(self.AWS_BUCKET_MEDIA)

    # ─────────────────────────────────────────────────────────────
    # Completion reconciler
    # ─────────────────────────────────────────────────────────────
    # Only one process per deployment should run the sweep
    RECONCILER_ENABLED: bool = field(default_factory=lambda: _get_env_bool("RECONCILER_ENABLED", True))
    RECONCILE_INTERVAL_SECS: int = field(default_factory=lambda: _get_env_int("RECONCILE_INTERVAL_SECS", 60))
    RECONCILE_BATCH_SIZE: int = field(default_factory=lambda: _get_env_int("RECONCILE_BATCH_SIZE", 20))
    JOB_MAX_AGE_MINUTES: int = field(default_factory=lambda: _get_env_int("JOB_MAX_AGE_MINUTES", 30))
    POLL_ERROR_THRESHOLD: int = field(default_factory=lambda: _get_env_int("POLL_ERROR_THRESHOLD", 3))
    POLL_FAST_INTERVAL_SECS: int = field(default_factory=lambda: _get_env_int("POLL_FAST_INTERVAL_SECS", 5))
    POLL_SLOW_INTERVAL_SECS: int = field(default_factory=lambda: _get_env_int("POLL_SLOW_INTERVAL_SECS", 10))
    POLL_FAST_WINDOW_SECS: int = field(default_factory=lambda: _get_env_int("POLL_FAST_WINDOW_SECS", 30))
    POLL_MAX_ATTEMPTS: int = field(default_factory=lambda: _get_env_int("POLL_MAX_ATTEMPTS", 150))

    # ─────────────────────────────────────────────────────────────
    # Submission controller (pipeline video submissions)
    # ─────────────────────────────────────────────────────────────
    VIDEO_MAX_ACTIVE: int = field(default_factory=lambda: _get_env_int("VIDEO_MAX_ACTIVE", 2))
    VIDEO_SLOT_WAIT_INITIAL_SECS: float = field(
        default_factory=lambda: _get_env_float("VIDEO_SLOT_WAIT_INITIAL_SECS", 5.0)
    )
    VIDEO_SLOT_WAIT_CEILING_SECS: float = field(
        default_factory=lambda: _get_env_float("VIDEO_SLOT_WAIT_CEILING_SECS", 30.0)
    )
    VIDEO_SLOT_WAIT_MAX_SECS: float = field(
        default_factory=lambda: _get_env_float("VIDEO_SLOT_WAIT_MAX_SECS", 1800.0)
    )
    VIDEO_RATE_LIMIT_RETRIES: int = field(default_factory=lambda: _get_env_int("VIDEO_RATE_LIMIT_RETRIES", 5))
    VIDEO_BACKOFF_BASE_SECS: float = field(default_factory=lambda: _get_env_float("VIDEO_BACKOFF_BASE_SECS", 5.0))
    VIDEO_BACKOFF_MAX_SECS: float = field(default_factory=lambda: _get_env_float("VIDEO_BACKOFF_MAX_SECS", 60.0))
    VIDEO_SUBMIT_SPACING_SECS: float = field(
        default_factory=lambda: _get_env_float("VIDEO_SUBMIT_SPACING_SECS", 2.0)
    )

    # ─────────────────────────────────────────────────────────────
    # Social auto-post (passive)
    # ─────────────────────────────────────────────────────────────
    TIKTOK_ACCESS_TOKEN: str = field(default_factory=lambda: _get_env("TIKTOK_ACCESS_TOKEN"))
    TIKTOK_API_BASE: str = field(
        default_factory=lambda: _get_env("TIKTOK_API_BASE", "https://open.tiktokapis.com/v2").rstrip("/")
    )
    TIKTOK_PRIVACY_LEVEL: str = field(default_factory=lambda: _get_env("TIKTOK_PRIVACY_LEVEL", "SELF_ONLY"))
    AUTO_POST_MOTION_CONTROL: bool = field(
        default_factory=lambda: _get_env_bool("AUTO_POST_MOTION_CONTROL", False)
    )

    @property
    def TIKTOK_CONFIGURED(self) -> bool:
        return bool(self.TIKTOK_ACCESS_TOKEN)

    # ─────────────────────────────────────────────────────────────
    # Logging & Debug
    # ─────────────────────────────────────────────────────────────
    def log_summary(self) -> None:
        """Print configuration summary for debugging."""
        print("=" * 60)
        print("[CONFIG] genstudio Backend Configuration")
        print("=" * 60)
        dev_note = " (auto-detected)" if self.IS_DEV and not _get_env("FLASK_ENV") else ""
        print(f"  Environment: {self.FLASK_ENV} (IS_DEV={self.IS_DEV}{dev_note})")
        print(f"  Running on Render: {self.IS_RENDER}")
        print(f"  Port: {self.PORT}")
        print("-" * 60)
        print(f"  Database configured: {self.HAS_DATABASE}")
        print(f"  AWS S3 configured: {self.AWS_CONFIGURED}")
        print(f"  Google configured: {self.GOOGLE_CONFIGURED}")
        print(f"  Kling configured: {self.KLING_CONFIGURED}")
        print(f"  TikTok auto-post: {self.TIKTOK_CONFIGURED}")
        print("-" * 60)
        print(f"  Reconciler: enabled={self.RECONCILER_ENABLED} "
              f"interval={self.RECONCILE_INTERVAL_SECS}s batch={self.RECONCILE_BATCH_SIZE} "
              f"max_age={self.JOB_MAX_AGE_MINUTES}m")
        print(f"  Video slots: {self.VIDEO_MAX_ACTIVE}")
        print("=" * 60)

    def validate(self) -> List[str]:
        """
        Validate configuration and return list of warnings.
        Returns empty list if all critical config is present.
        """
        warnings = []

        if not self.GOOGLE_CONFIGURED and not self.KLING_CONFIGURED:
            warnings.append("No provider credentials set - every submission will fail")

        if self.IS_PROD:
            if not self.HAS_DATABASE:
                warnings.append("DATABASE_URL not set - running without persistence!")
            if not self.AWS_CONFIGURED:
                warnings.append("AWS_BUCKET_MEDIA not set - results keep expiring provider URLs")
            if not self.ALLOWED_ORIGINS:
                warnings.append("ALLOWED_ORIGINS not set - CORS will block requests")
            if self.ALLOW_ALL_ORIGINS:
                warnings.append("ALLOWED_ORIGINS=* - allowing all origins (not recommended for production)")
            if self.KLING_CONFIGURED and not self.KLING_CALLBACK_URL:
                warnings.append("KLING_CALLBACK_URL not set - Kling jobs rely on polling only")

        return warnings


# ─────────────────────────────────────────────────────────────
# Singleton instance
# ─────────────────────────────────────────────────────────────
try:
    config = Config()
    print(f"[CONFIG] Loaded successfully (IS_DEV={config.IS_DEV}, IS_RENDER={config.IS_RENDER})")
except Exception as e:
    print(f"[CONFIG] FATAL: Failed to load config: {repr(e)}")
    raise
