import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    cache_dir: str
    cache_ttl_seconds: int
    session_cache_ttl_seconds: int

    # Seed account for scripts/init_db.py
    admin_email: str
    admin_password: str
    admin_name: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///contacthub.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        cache_dir=_getenv("CACHE_DIR", ""),
        # Snapshots are last-known-good copies; a day keeps them useful across restarts.
        cache_ttl_seconds=_getenv_int("CACHE_TTL_SECONDS", 24 * 60 * 60),
        # Session tier lives no longer than a login session.
        session_cache_ttl_seconds=_getenv_int("SESSION_CACHE_TTL_SECONDS", 8 * 60 * 60),
        admin_email=_getenv("ADMIN_EMAIL", "admin@contacthub.local").lower(),
        admin_password=_getenv("ADMIN_PASSWORD", "change-me"),
        admin_name=_getenv("ADMIN_NAME", "System Administrator"),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "CACHE_DIR": s.cache_dir,
        "CACHE_TTL_SECONDS": s.cache_ttl_seconds,
        "SESSION_CACHE_TTL_SECONDS": s.session_cache_ttl_seconds,
        "ADMIN_EMAIL": s.admin_email,
        "ADMIN_NAME": s.admin_name,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # JSON payloads only; no uploads
        "MAX_CONTENT_LENGTH": 2 * 1024 * 1024,
    }
