from __future__ import annotations

import os
import tempfile

import pytest

# Logging is configured on first import of taskrelay; keep it out of the repo tree.
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="taskrelay_logs_"))

from taskrelay.config import get_settings  # noqa: E402
from tests._helpers.fakes import TEST_API_KEY  # noqa: E402


@pytest.fixture(autouse=True)
def _test_env(
    tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
) -> None:
    root = tmp_path_factory.mktemp("taskrelay_test")
    (root / "logs").mkdir(parents=True, exist_ok=True)
    (root / "_state").mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("LOG_DIR", str(root / "logs"))
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("STORE_PATH", str(root / "_state" / "taskrelay.db"))
    monkeypatch.setenv("DELIVERY_MODE", "kv-queue")
    monkeypatch.setenv("QUEUE_API_KEY", TEST_API_KEY)
    for k in ("ENV", "APP_ENV", "STRICT_SECRETS", "REDIS_URL", "WEBHOOK_URL", "DIRECT_URL"):
        monkeypatch.delenv(k, raising=False)
    get_settings.cache_clear()
