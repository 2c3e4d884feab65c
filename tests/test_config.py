"""Provider configuration loading and validation."""
import pytest

from marketplace.core.config import ProviderConfig, Settings, settings
from marketplace.core.exceptions import ConfigurationError


def test_complete_settings_validate(provider_config):
    assert provider_config.missing() == []
    assert provider_config.environment == "sandbox"
    assert not provider_config.is_production
    assert provider_config.merchants["amex"] == "654321"


def test_missing_values_are_named():
    s = Settings(mitec_key_hex="", mitec_data0="", mitec_merchant_default="", _env_file=None)
    with pytest.raises(ConfigurationError) as exc:
        ProviderConfig.from_settings(s)
    assert "MITEC_KEY_HEX" in exc.value.missing
    assert "MITEC_DATA0" in exc.value.missing
    assert "MITEC_MERCHANT_DEFAULT" in exc.value.missing


def test_unvalidated_config_can_be_built():
    s = Settings(mitec_key_hex="", _env_file=None)
    config = ProviderConfig.from_settings(s, validate=False)
    assert "MITEC_KEY_HEX" in config.missing()


def test_secrets_are_stripped_and_currency_upper():
    s = Settings(mitec_key_hex=" abc \n", mitec_default_currency="usd", _env_file=None)
    assert s.mitec_key_hex == "abc"
    assert s.mitec_default_currency == "USD"


def test_client_ip_prefers_first_forwarded_hop():
    from starlette.requests import Request

    from marketplace.core.rate_limit import get_client_ip

    scope = {
        "type": "http",
        "headers": [(b"x-forwarded-for", b"203.0.113.7, 10.0.0.1")],
        "client": ("10.0.0.1", 5000),
    }
    assert get_client_ip(Request(scope)) == "203.0.113.7"
    assert get_client_ip(Request({"type": "http", "headers": [], "client": ("10.0.0.1", 5000)})) == "10.0.0.1"


def test_payment_rate_limit_follows_settings(monkeypatch):
    from marketplace.core.rate_limit import payment_rate_limit

    monkeypatch.setattr(settings, "rate_limit_payment_per_minute", 5)
    assert payment_rate_limit() == "5/minute"
