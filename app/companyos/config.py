import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    app_name: str
    public_base_url: str

    storage_backend: str
    storage_local_dir: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    login_rate_limit: int
    login_rate_window_seconds: int


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


def normalize_database_url(url: str) -> str:
    """Point bare postgres URLs at the psycopg (v3) driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=normalize_database_url(_getenv("DATABASE_URL", "sqlite:///companyos.db")),
        app_name=_getenv("APP_NAME", "CompanyOS"),
        public_base_url=_getenv("PUBLIC_BASE_URL", "").rstrip("/"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_local_dir=_getenv("STORAGE_LOCAL_DIR", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        login_rate_limit=_getenv_int("LOGIN_RATE_LIMIT", 5),
        login_rate_window_seconds=_getenv_int("LOGIN_RATE_WINDOW_SECONDS", 300),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "APP_NAME": s.app_name,
        "PUBLIC_BASE_URL": s.public_base_url,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_LOCAL_DIR": s.storage_local_dir,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "LOGIN_RATE_LIMIT": s.login_rate_limit,
        "LOGIN_RATE_WINDOW_SECONDS": s.login_rate_window_seconds,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # evidence uploads (25MB)
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
        "JSON_SORT_KEYS": False,
    }
