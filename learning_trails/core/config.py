from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]
GenerationMode = Literal["inline", "queue"]


def _getenv(name: str, default: str) -> str:
    # Centralize env access so casting and validation live in one place
    return os.environ.get(name, default).strip()


def _int(name: str, default: str, *, minimum: int = 0) -> int:
    raw = _getenv(name, default)
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _float(name: str, default: str) -> float:
    raw = _getenv(name, default)
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if value < 0:
        raise ValueError(f"{name} must be >= 0 (got {value})")
    return value


def _bool(name: str, default: str) -> bool:
    raw = _getenv(name, default).lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


def _pem(name: str) -> str | None:
    # Env files carry PEM blocks with escaped newlines
    raw = os.environ.get(name, "").strip()
    return raw.replace("\\n", "\n") or None


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    generation_mode: GenerationMode = "inline"
    max_active_trails: int = 3
    generation_max_attempts: int = 3
    lesson_max_attempts: int = 3
    lesson_backoff_seconds: float = 2.0
    job_retry_delay_seconds: float = 5.0
    worker_concurrency: int = 4
    worker_id: str = "worker"
    default_level_code: str = "A1"
    curriculum_version: str = "1.0.0"
    content_api_url: str | None = None
    content_api_key: str | None = None
    content_api_timeout: float = 30.0
    progress_cache_ttl: int = 300
    jwt_public_key: str | None = None

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    @property
    def inline_generation(self) -> bool:
        return self.generation_mode == "inline"


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    database_url = _getenv("DATABASE_URL", "") or None
    redis_url = _getenv("REDIS_URL", "") or None

    # Without Redis there is no shared queue for a separate worker to read,
    # so generation runs inside the API process.
    mode_raw = _getenv("GENERATION_MODE", "queue" if redis_url else "inline").lower()
    if mode_raw not in ("inline", "queue"):
        raise ValueError(f"GENERATION_MODE must be inline|queue (got {mode_raw!r})")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_bool("LOG_JSON", "false"),
        port=port,
        database_url=database_url,
        redis_url=redis_url,
        generation_mode=mode_raw,
        max_active_trails=_int("MAX_ACTIVE_TRAILS", "3", minimum=1),
        generation_max_attempts=_int("GENERATION_MAX_ATTEMPTS", "3", minimum=1),
        lesson_max_attempts=_int("LESSON_MAX_ATTEMPTS", "3", minimum=1),
        lesson_backoff_seconds=_float("LESSON_BACKOFF_SECONDS", "2.0"),
        job_retry_delay_seconds=_float("JOB_RETRY_DELAY_SECONDS", "5.0"),
        worker_concurrency=_int("WORKER_CONCURRENCY", "4", minimum=1),
        worker_id=_getenv("WORKER_ID", "") or _default_worker_id(),
        default_level_code=_getenv("DEFAULT_LEVEL_CODE", "A1").upper(),
        curriculum_version=_getenv("CURRICULUM_VERSION", "1.0.0"),
        content_api_url=_getenv("CONTENT_API_URL", "") or None,
        content_api_key=_getenv("CONTENT_API_KEY", "") or None,
        content_api_timeout=_float("CONTENT_API_TIMEOUT", "30.0"),
        progress_cache_ttl=_int("PROGRESS_CACHE_TTL", "300"),
        jwt_public_key=_pem("JWT_PUBLIC_KEY"),
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()
