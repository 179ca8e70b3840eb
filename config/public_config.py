from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STORE_BACKENDS = ("memory", "sqlite", "redis")
DELIVERY_MODES = ("kv-queue", "webhook", "direct")


class PublicConfig(BaseSettings):
    """
    Non-sensitive config with safe defaults.

    Loaded from (in order):
      - process env
      - optional `.env` file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- key layout ---
    # Every record key is "<prefix>:task:<id>", "<prefix>:lease:<id>", ...
    queue_key_prefix: str = Field(default="queue", alias="QUEUE_KEY_PREFIX")

    # --- record lifetimes (seconds) ---
    task_ttl_sec: int = Field(default=3600, alias="TASK_TTL_SEC")  # abandoned tasks self-expire
    lease_ttl_sec: int = Field(default=300, alias="LEASE_TTL_SEC")  # crashed worker bound
    lease_max_sec: int = Field(default=600, alias="LEASE_MAX_SEC")  # cap for requested leases
    result_ttl_sec: int = Field(default=3600, alias="RESULT_TTL_SEC")  # consumer pickup window

    # --- task index cache (local windows; independent of the TTLs above) ---
    task_index_fresh_sec: int = Field(default=300, alias="TASK_INDEX_FRESH_SEC")
    task_index_stale_max_sec: int = Field(default=1800, alias="TASK_INDEX_STALE_MAX_SEC")

    # Hint returned to producers on acceptance.
    estimated_completion_sec: int = Field(default=60, alias="ESTIMATED_COMPLETION_SEC")

    # --- store adapter ---
    store_backend: str = Field(default="memory", alias="STORE_BACKEND")  # memory|sqlite|redis
    store_path: Path = Field(
        default_factory=lambda: (Path.cwd() / "_state" / "taskrelay.db").resolve(),
        alias="STORE_PATH",
    )

    # --- delivery strategy (selected once at construction) ---
    delivery_mode: str = Field(default="kv-queue", alias="DELIVERY_MODE")  # kv-queue|webhook|direct
    delivery_timeout_sec: float = Field(default=30.0, alias="DELIVERY_TIMEOUT_SEC")
    webhook_url: str = Field(default="", alias="WEBHOOK_URL")
    direct_url: str = Field(default="", alias="DIRECT_URL")
    # Extra attempts on timeouts, 408/425/429 and 5xx (total calls = 1 + retries).
    delivery_retries: int = Field(default=2, alias="DELIVERY_RETRIES")

    # --- producer payload bounds ---
    metadata_max_bytes: int = Field(default=16 * 1024, alias="METADATA_MAX_BYTES")
    content_max_chars: int = Field(default=100_000, alias="CONTENT_MAX_CHARS")

    # --- worker loop ---
    worker_id: str = Field(default="", alias="WORKER_ID")  # empty => host/pid derived
    worker_poll_interval_sec: float = Field(default=15.0, alias="WORKER_POLL_INTERVAL_SEC")
    worker_renew_interval_sec: float = Field(default=120.0, alias="WORKER_RENEW_INTERVAL_SEC")
    worker_max_consecutive_errors: int = Field(default=5, alias="WORKER_MAX_CONSECUTIVE_ERRORS")
    worker_max_backoff_sec: float = Field(default=60.0, alias="WORKER_MAX_BACKOFF_SEC")

    # --- web server ---
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # --- logging ---
    log_dir: Path = Field(default_factory=lambda: (Path.cwd() / "logs").resolve(), alias="LOG_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_max_bytes: int = Field(default=5 * 1024 * 1024, alias="LOG_MAX_BYTES")
    log_backup_count: int = Field(default=3, alias="LOG_BACKUP_COUNT")

    @field_validator("store_backend")
    @classmethod
    def _check_store_backend(cls, v: str) -> str:
        v = str(v or "").strip().lower()
        if v not in STORE_BACKENDS:
            raise ValueError(f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}")
        return v

    @field_validator("delivery_mode")
    @classmethod
    def _check_delivery_mode(cls, v: str) -> str:
        v = str(v or "").strip().lower()
        if v not in DELIVERY_MODES:
            raise ValueError(f"DELIVERY_MODE must be one of {', '.join(DELIVERY_MODES)}")
        return v

    @field_validator("queue_key_prefix")
    @classmethod
    def _strip_prefix(cls, v: str) -> str:
        return str(v or "").strip().strip(":") or "queue"
