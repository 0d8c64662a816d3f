"""Tests for environment-driven settings."""

import os
from pathlib import Path

import pytest

from transparency.config import AnchorSettings
from transparency.errors import ValidationError
from transparency.net import RetryPolicy


class TestFromEnv:
    def test_defaults(self) -> None:
        settings = AnchorSettings.from_env(environ={})
        assert settings.registry_url == "http://issuer-registry:4030"
        assert settings.forensics_url == "http://forensics-api:4010"
        assert settings.registry_page_limit == 10_000
        assert settings.public_log_url is None
        assert settings.local_log_path is None
        assert settings.auto_target == "local-log"
        assert settings.retry_policy == RetryPolicy(retries=2, backoff_seconds=0.5)

    def test_overrides(self) -> None:
        settings = AnchorSettings.from_env(environ={
            "REGISTRY_URL": "http://reg:1",
            "FORENSICS_URL": "http://chain:2",
            "PUBLIC_LOG_URL": "https://log.example",
            "ANCHOR_DB_PATH": "/tmp/a.db",
            "ANCHOR_LOCAL_LOG_PATH": "/tmp/a.jsonl",
            "ANCHOR_HTTP_RETRIES": "0",
            "ANCHOR_HTTP_TIMEOUT": "2.5",
            "HOSTNAME": "anchor-7",
            "LOG_LEVEL": "debug",
        })
        assert settings.registry_url == "http://reg:1"
        assert settings.public_log_url == "https://log.example"
        assert settings.db_path == Path("/tmp/a.db")
        assert settings.local_log_path == Path("/tmp/a.jsonl")
        assert settings.http_retries == 0
        assert settings.http_timeout_seconds == 2.5
        assert settings.instance_id == "anchor-7"
        assert settings.log_level == "DEBUG"

    def test_empty_value_means_default(self) -> None:
        assert AnchorSettings.from_env(environ={"REGISTRY_URL": ""}).registry_url == "http://issuer-registry:4030"

    @pytest.mark.parametrize("name,value", [
        ("REGISTRY_PAGE_LIMIT", "lots"),
        ("REGISTRY_PAGE_LIMIT", "0"),
        ("ANCHOR_HTTP_RETRIES", "-1"),
        ("ANCHOR_HTTP_TIMEOUT", "soon"),
    ])
    def test_invalid_numbers_rejected(self, name: str, value: str) -> None:
        with pytest.raises(ValidationError):
            AnchorSettings.from_env(environ={name: value})

    def test_env_file_loaded(self, tmp_path, monkeypatch) -> None:
        monkeypatch.delenv("REGISTRY_URL", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("REGISTRY_URL=http://from-file:9\n", encoding="utf-8")
        settings = AnchorSettings.from_env(env_file=env_file)
        try:
            assert settings.registry_url == "http://from-file:9"
        finally:
            os.environ.pop("REGISTRY_URL", None)


class TestRetryPolicy:
    def test_exponential_delay(self) -> None:
        policy = RetryPolicy(retries=3, backoff_seconds=0.5)
        assert [policy.delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]
