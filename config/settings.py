from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import SecretStr

from .public_config import PublicConfig
from .secret_config import SecretConfig


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class Settings:
    """
    Read-only view over both config halves: `s.lease_ttl_sec`, `s.redis_url`.
    A name defined in both resolves to the secret one.
    """

    public: PublicConfig
    secret: SecretConfig

    def __getattr__(self, name: str) -> Any:
        if hasattr(self.secret, name):
            return getattr(self.secret, name)
        return getattr(self.public, name)


_WEAK_KEYS = {"change-me", "changeme", "secret"}
_MIN_KEY_LEN = 24


def _strict_secrets() -> bool:
    return str(os.environ.get("STRICT_SECRETS") or "0").strip() not in {"", "0", "false", "no"}


def _is_production_env() -> bool:
    env = str(os.environ.get("ENV") or os.environ.get("APP_ENV") or "").strip().lower()
    return env in {"prod", "production"}


def _structural_problems(s: Settings) -> list[str]:
    pub = s.public
    checks = [
        (
            pub.store_backend == "redis" and not str(s.secret.redis_url or "").strip(),
            "STORE_BACKEND=redis requires REDIS_URL",
        ),
        (pub.delivery_mode == "webhook" and not pub.webhook_url.strip(), "DELIVERY_MODE=webhook requires WEBHOOK_URL"),
        (pub.delivery_mode == "direct" and not pub.direct_url.strip(), "DELIVERY_MODE=direct requires DIRECT_URL"),
        (pub.lease_ttl_sec > pub.lease_max_sec, "LEASE_TTL_SEC must not exceed LEASE_MAX_SEC"),
        (
            pub.task_index_stale_max_sec < pub.task_index_fresh_sec,
            "TASK_INDEX_STALE_MAX_SEC must be >= TASK_INDEX_FRESH_SEC",
        ),
    ]
    return [msg for bad, msg in checks if bad]


def _api_key_is_weak(key: SecretStr | None) -> bool:
    raw = key.get_secret_value() if key is not None else ""
    return len(raw) < _MIN_KEY_LEN or raw.strip().lower() in _WEAK_KEYS


def _validate(s: Settings) -> None:
    """
    Structural mismatches always fail. A weak QUEUE_API_KEY fails only in
    production or with STRICT_SECRETS=1; otherwise it is logged.
    """
    problems = _structural_problems(s)
    if problems:
        raise ConfigError("Invalid configuration: " + "; ".join(problems))

    if not _api_key_is_weak(s.secret.queue_api_key):
        return
    if _is_production_env() or _strict_secrets():
        raise ConfigError(
            "QUEUE_API_KEY is missing or weak (need at least "
            f"{_MIN_KEY_LEN} characters). Set it via the environment or `.env.secrets`."
        )
    logging.getLogger("taskrelay").warning(
        "weak_queue_api_key", extra={"production": False, "strict_secrets": False}
    )


def _marker(v: Any) -> str:
    if isinstance(v, SecretStr):
        v = v.get_secret_value()
    return "SET" if v is not None and str(v).strip() else "UNSET"


def get_safe_config_report() -> dict[str, Any]:
    """
    Effective configuration for `taskrelay config` and support bundles.
    Secret values are replaced by SET/UNSET.
    """
    s = get_settings()
    public = {k: (str(v) if isinstance(v, Path) else v) for k, v in s.public.model_dump().items()}
    secrets = {k: _marker(getattr(s.secret, k, None)) for k in sorted(type(s.secret).model_fields)}
    return {"strict_secrets": _strict_secrets(), "public": public, "secrets": secrets}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings(public=PublicConfig(), secret=SecretConfig())
    _validate(s)
    return s
