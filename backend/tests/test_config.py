import pytest

from backend.config import load_app_config, load_billing_config, load_database_config, load_session_config


def test_database_config_defaults_and_timeout_rounding():
    config = load_database_config({"DB_CONNECT_TIMEOUT": "2.2", "DB_PORT": "6543"})

    assert config.port == 6543
    assert config.connect_timeout == 3
    assert config.as_connect_kwargs()["dbname"] == "restaurant_db"


@pytest.mark.parametrize("timeout", ["soon", "-1"])
def test_database_config_rejects_bad_timeout(timeout):
    with pytest.raises(ValueError):
        load_database_config({"DB_CONNECT_TIMEOUT": timeout})


def test_session_config_normalizes_staff_roles():
    config = load_session_config({"STAFF_ROLES": "Manager, Host ,", "SESSION_COOKIE_SECURE": "yes"})

    assert config.staff_roles == ("manager", "host")
    assert config.cookie_secure is True
    assert config.jwt_exp_minutes == 60 * 24 * 7


def test_billing_config_defaults_to_sandbox_without_credentials():
    config = load_billing_config({})

    assert config.provider_name == "sandbox"
    assert config.app_base_url == "http://localhost:3000"
    assert config.currency == "usd"


def test_billing_config_selects_stripe_when_key_present():
    config = load_billing_config(
        {
            "STRIPE_SECRET_KEY": "sk_test_123",
            "STRIPE_WEBHOOK_SECRET": "whsec_123",
            "APP_BASE_URL": "https://tables.example.com/",
            "BILLING_CURRENCY": "EUR",
        }
    )

    assert config.provider_name == "stripe"
    assert config.stripe_webhook_secret == "whsec_123"
    assert config.app_base_url == "https://tables.example.com"
    assert config.currency == "eur"


def test_billing_config_requires_key_for_stripe():
    with pytest.raises(ValueError, match="STRIPE_SECRET_KEY"):
        load_billing_config({"BILLING_PROVIDER": "stripe"})


def test_billing_config_rejects_unknown_provider():
    with pytest.raises(ValueError, match="BILLING_PROVIDER"):
        load_billing_config({"BILLING_PROVIDER": "paypal"})


def test_app_config_parses_cors_origins():
    config = load_app_config({"CORS_ORIGINS": "https://a.example.com, https://b.example.com"})

    assert config.cors_origins == ("https://a.example.com", "https://b.example.com")
