"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest

from webhook_ingest.config import Settings, load_settings
from webhook_ingest.webhooks.models import Sender


@pytest.fixture
def clean_env(monkeypatch):
    for var in ("FIGMA_SECRET", "STRIPE_WEBHOOK_SECRET", "EVENT_STORE", "REDIS_URL", "ACCOUNTS_URL"):
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = load_settings(_env_file=None)
    assert settings.figma_secret is None
    assert settings.stripe_tolerance_seconds == 300
    assert settings.event_store == "postgres"
    assert settings.redis_url == ""
    assert settings.accounts_url == ""


def test_reads_environment(clean_env):
    clean_env.setenv("FIGMA_SECRET", "fs")
    clean_env.setenv("STRIPE_WEBHOOK_SECRET", "whsec_x")
    clean_env.setenv("EVENT_STORE", "memory")
    settings = load_settings(_env_file=None)
    assert settings.secret_for(Sender.FIGMA) == "fs"
    assert settings.secret_for(Sender.STRIPE) == "whsec_x"
    assert settings.event_store == "memory"


def test_empty_secret_is_absent(clean_env):
    clean_env.setenv("FIGMA_SECRET", "")
    assert load_settings(_env_file=None).secret_for(Sender.FIGMA) is None


def test_secrets_hidden_from_repr(clean_env):
    settings = Settings(figma_secret="super-secret-value", _env_file=None)
    assert "super-secret-value" not in repr(settings)
    assert "super-secret-value" not in str(settings.model_dump())


def test_invalid_store_backend_rejected(clean_env):
    with pytest.raises(ValueError):
        Settings(event_store="mongo", _env_file=None)

