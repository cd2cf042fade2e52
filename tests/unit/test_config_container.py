from unittest.mock import MagicMock
import pytest

from backend import config
from backend.app_setup.container import build_gateway, build_services, get_services
from backend.config import Settings


def test_clean_env_strips_quotes_and_spaces():
    assert config._clean_env('  "sk_test_123" ') == "sk_test_123"
    assert config._clean_env("`value`") == "value"
    assert config._clean_env(None) == ""


def test_env_flag(monkeypatch):
    monkeypatch.setenv("SOME_FLAG", "Yes")
    assert config._env_flag("SOME_FLAG") is True
    monkeypatch.setenv("SOME_FLAG", "0")
    assert config._env_flag("SOME_FLAG") is False
    monkeypatch.delenv("SOME_FLAG")
    assert config._env_flag("SOME_FLAG") is False


def test_settings_capabilities():
    s = Settings()
    assert not s.stripe_configured
    assert not s.webhook_configured
    assert not s.is_production
    assert s.default_deposit_percent == 30.0
    assert s.quote_validity_days == 30
    p = Settings(app_env="production", stripe_secret_key="sk_live_x", stripe_webhook_secret="whsec_x")
    assert p.is_production and p.stripe_configured and p.webhook_configured


def test_load_settings_reflects_module_constants(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "sk_test_abc")
    monkeypatch.setattr(config, "CHECKOUT_REUSE_PENDING", True)
    s = config.load_settings()
    assert s.stripe_secret_key == "sk_test_abc"
    assert s.checkout_reuse_pending is True


def test_gateway_placeholder_only_outside_production():
    assert build_gateway(Settings(app_env="development")).allow_placeholder is True
    assert build_gateway(Settings(app_env="production")).allow_placeholder is False
    assert build_gateway(Settings(stripe_secret_key="sk_test_x")).configured is True


def test_build_services_uses_injected_clients():
    supabase = MagicMock()
    services = build_services(Settings(), supabase_client=supabase)
    assert services.quotes.client is supabase
    assert services.payments.client is supabase
    assert services.signatures.bucket == "signatures"
    # Sans clé anon, le client service résout aussi les jetons
    assert services.auth_client is supabase


def test_build_services_requires_supabase_credentials():
    with pytest.raises(RuntimeError):
        build_services(Settings())


def test_get_services_before_startup():
    request = MagicMock()
    request.app.state.services = None
    with pytest.raises(RuntimeError):
        get_services(request)
