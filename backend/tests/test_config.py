from flightpay.config import Settings


def test_test_mode_selects_test_credentials(test_settings: Settings) -> None:
    credentials = test_settings.active_credentials()

    assert test_settings.is_test_mode is True
    assert credentials.api_key == "test_api_key"
    assert credentials.hmac_secret == "test_hmac_secret"


def test_live_mode_selects_live_credentials() -> None:
    settings = Settings(
        _env_file=None,
        paymob_mode="live",
        paymob_test_api_key="test_api_key",
        paymob_api_key="live_api_key",
        paymob_iframe_id=99,
        paymob_hmac_secret="live_hmac_secret",
    )

    credentials = settings.active_credentials()

    assert settings.is_test_mode is False
    assert credentials.api_key == "live_api_key"
    assert credentials.iframe_id == 99
    assert settings.public_config()["iframeId"] == 99


def test_public_config_has_no_secrets(test_settings: Settings) -> None:
    config = test_settings.public_config()

    assert set(config) == {"mode", "integrationId", "iframeId", "supportedCurrencies", "minimumAmount"}
    assert "test_api_key" not in config.values()


def test_token_refresh_precedes_gateway_expiry() -> None:
    assert Settings(_env_file=None).paymob_token_refresh_seconds < 3600
