from __future__ import annotations

import json

import pytest

from taskrelay.config import ConfigError, get_safe_config_report, get_settings
from taskrelay.delivery import DeliveryConfig
from taskrelay.queue import QueueConfig


def test_defaults() -> None:
    s = get_settings()
    assert s.store_backend == "memory"
    assert s.delivery_mode == "kv-queue"
    assert s.lease_ttl_sec == 300
    assert s.lease_max_sec == 600
    assert s.task_index_fresh_sec == 300
    assert s.task_index_stale_max_sec == 1800

    q = QueueConfig.from_settings(s)
    assert q.keys.index == "queue:task-index"
    assert q.keys.task("a") == "queue:task:a"
    assert q.index_ttl_sec == 600
    assert q.clamp_lease(None) == 300
    assert q.clamp_lease(5000) == 600


def test_key_prefix_is_normalised(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QUEUE_KEY_PREFIX", " team-a: ")
    get_settings.cache_clear()
    assert QueueConfig.from_settings(get_settings()).keys.lease("x") == "team-a:lease:x"


def test_invalid_backend_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORE_BACKEND", "etcd")
    get_settings.cache_clear()
    with pytest.raises(ValueError):
        get_settings()


def test_structural_mismatches_fail(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DELIVERY_MODE", "webhook")
    get_settings.cache_clear()
    with pytest.raises(ConfigError, match="WEBHOOK_URL"):
        get_settings()

    monkeypatch.setenv("DELIVERY_MODE", "kv-queue")
    monkeypatch.setenv("STORE_BACKEND", "redis")
    get_settings.cache_clear()
    with pytest.raises(ConfigError, match="REDIS_URL"):
        get_settings()

    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("LEASE_TTL_SEC", "900")
    get_settings.cache_clear()
    with pytest.raises(ConfigError, match="LEASE_TTL_SEC"):
        get_settings()


def test_weak_key_fails_only_when_strict(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QUEUE_API_KEY", "short")
    get_settings.cache_clear()
    get_settings()

    monkeypatch.setenv("STRICT_SECRETS", "1")
    get_settings.cache_clear()
    with pytest.raises(ConfigError, match="QUEUE_API_KEY"):
        get_settings()

    monkeypatch.delenv("STRICT_SECRETS")
    monkeypatch.setenv("ENV", "production")
    get_settings.cache_clear()
    with pytest.raises(ConfigError):
        get_settings()


def test_safe_report_hides_secrets(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DELIVERY_AUTH_TOKEN", "very-secret-delivery-token")
    get_settings.cache_clear()
    rep = get_safe_config_report()
    blob = json.dumps(rep, default=str)
    assert "very-secret-delivery-token" not in blob
    assert get_settings().secret.queue_api_key.get_secret_value() not in blob
    assert rep["secrets"]["delivery_auth_token"] == "SET"
    assert rep["secrets"]["redis_url"] == "UNSET"
    assert rep["public"]["store_backend"] == "memory"


def test_delivery_config_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DELIVERY_MODE", "direct")
    monkeypatch.setenv("DIRECT_URL", " http://orch:9000 ")
    monkeypatch.setenv("DELIVERY_RETRIES", "-3")
    monkeypatch.setenv("DELIVERY_AUTH_TOKEN", "tok-abcdefgh")
    get_settings.cache_clear()
    cfg = DeliveryConfig.from_settings(get_settings())
    assert cfg.mode == "direct"
    assert cfg.direct_url == "http://orch:9000"
    assert cfg.retries == 0
    assert cfg.auth_token == "tok-abcdefgh"
