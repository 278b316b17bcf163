"""
Environment-driven configuration.

Everything is read once at startup (`load_settings()`) and passed around as
an immutable `Settings` object.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MiB

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_str(name: str, default: str) -> str:
    return os.environ.get(name, default).strip() or default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    return default


def _sanitize_database_url(url: str) -> str:
    # asyncpg takes TLS settings through `ssl=`, not the libpq query param.
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = [(k, v) for (k, v) in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    query = urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = ""
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    name: str = "certificates"
    ssl: bool = False
    min_size: int = 1
    max_size: int = 10
    connect_timeout_s: float = 10.0
    acquire_timeout_s: float = 10.0
    query_timeout_s: float = 30.0
    init_max_attempts: int = 5
    reconnect_delay_s: float = 5.0
    recovery_interval_s: float = 60.0
    skip_init: bool = False

    def dsn(self) -> str:
        if self.url:
            return _sanitize_database_url(self.url)
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"

    def redacted_dsn(self) -> str:
        parts = urlsplit(self.dsn())
        if parts.password is None:
            return self.dsn()
        netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))

    def target(self) -> tuple[str, int]:
        """
        Host/port the pool actually connects to (used by network diagnostics).
        """
        if self.url:
            parts = urlsplit(self.url)
            return parts.hostname or "localhost", parts.port or 5432
        return self.host, self.port


@dataclass(frozen=True)
class Settings:
    database: DatabaseSettings
    upload_dir: Path = Path("uploads")
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    import_batch_size: int = 50
    auto_cleanup: bool = True
    cleanup_interval_s: float = 24 * 60 * 60
    record_retention_months: int = 3
    file_retention_days: int = 7
    debug_endpoints: bool = False
    admin_secret: str = ""
    log_level: str = "INFO"


def load_database_settings() -> DatabaseSettings:
    return DatabaseSettings(
        url=os.environ.get("DATABASE_URL", "").strip(),
        host=_env_str("DB_HOST", "localhost"),
        port=_env_int("DB_PORT", 5432),
        user=_env_str("DB_USER", "postgres"),
        password=os.environ.get("DB_PASSWORD", ""),
        name=_env_str("DB_NAME", "certificates"),
        ssl=_env_bool("DB_SSL", False),
        min_size=max(0, _env_int("DB_POOL_MIN_SIZE", 1)),
        max_size=max(1, _env_int("DB_POOL_MAX_SIZE", 10)),
        connect_timeout_s=_env_float("DB_CONNECT_TIMEOUT", 10.0),
        acquire_timeout_s=_env_float("DB_ACQUIRE_TIMEOUT", 10.0),
        query_timeout_s=_env_float("DB_QUERY_TIMEOUT", 30.0),
        init_max_attempts=max(1, _env_int("DB_INIT_MAX_ATTEMPTS", 5)),
        reconnect_delay_s=_env_float("DB_RECONNECT_DELAY", 5.0),
        recovery_interval_s=_env_float("DB_RECOVERY_INTERVAL", 60.0),
        skip_init=_env_bool("SKIP_DB_INIT", False),
    )


def load_settings() -> Settings:
    batch_size = _env_int("IMPORT_BATCH_SIZE", 50)
    max_upload_bytes = _env_int("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES)
    return Settings(
        database=load_database_settings(),
        upload_dir=Path(_env_str("UPLOAD_DIR", "uploads")),
        max_upload_bytes=max_upload_bytes if max_upload_bytes > 0 else DEFAULT_MAX_UPLOAD_BYTES,
        import_batch_size=batch_size if batch_size > 0 else 50,
        auto_cleanup=_env_bool("AUTO_CLEANUP", True),
        cleanup_interval_s=_env_float("CLEANUP_INTERVAL_HOURS", 24.0) * 60 * 60,
        record_retention_months=max(1, _env_int("RECORD_RETENTION_MONTHS", 3)),
        file_retention_days=max(1, _env_int("FILE_RETENTION_DAYS", 7)),
        debug_endpoints=_env_bool("DEBUG_ENDPOINTS", False),
        admin_secret=os.environ.get("ADMIN_SECRET", "").strip(),
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
    )
