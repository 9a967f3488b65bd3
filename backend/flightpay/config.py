"""
FlightPay Configuration Module

Loads environment variables for the payment backend. Paymob credentials come
in test/live pairs; `paymob_mode` selects which pair is active.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Literal

from pydantic_settings import BaseSettings


@dataclass(frozen=True)
class PaymobCredentials:
    """Credential set for one Paymob environment."""
    api_key: str
    integration_id: int
    iframe_id: int
    hmac_secret: str


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Security Notes:
    - API keys and HMAC secrets are environment-based only
    - public_config() is the only view handed to browsers
    """

    # Paymob mode and credentials
    paymob_mode: Literal["test", "live"] = "test"

    paymob_test_api_key: str = ""
    paymob_test_integration_id: int = 0
    paymob_test_iframe_id: int = 0
    paymob_test_hmac_secret: str = ""

    paymob_api_key: str = ""
    paymob_integration_id: int = 0
    paymob_iframe_id: int = 0
    paymob_hmac_secret: str = ""

    # Gateway transport
    paymob_base_url: str = "https://accept.paymob.com/api"
    paymob_iframe_base_url: str = "https://accept.paymob.com/api/acceptance/iframes"
    paymob_timeout_seconds: float = 30.0
    paymob_retry_attempts: int = 3
    paymob_retry_base_delay_seconds: float = 1.0

    # Gateway tokens live 3600s; refresh after 50 minutes
    paymob_token_refresh_seconds: int = 3000
    paymob_payment_key_expiration: int = 3600

    # Payment rules
    default_currency: str = "EGP"
    supported_currencies: List[str] = ["EGP", "USD", "EUR", "GBP"]
    minimum_amount_cents: int = 100

    # Browser redirect target after hosted checkout
    frontend_url: str = "http://localhost:3000"

    # Reconciliation
    reconciliation_enabled: bool = True
    reconciliation_interval_minutes: int = 15
    stale_pending_minutes: int = 60

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Database
    database_path: str = "./flightpay.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def is_test_mode(self) -> bool:
        return self.paymob_mode == "test"

    def active_credentials(self) -> PaymobCredentials:
        """Return the credential pair selected by paymob_mode."""
        if self.is_test_mode:
            return PaymobCredentials(
                api_key=self.paymob_test_api_key,
                integration_id=self.paymob_test_integration_id,
                iframe_id=self.paymob_test_iframe_id,
                hmac_secret=self.paymob_test_hmac_secret,
            )
        return PaymobCredentials(
            api_key=self.paymob_api_key,
            integration_id=self.paymob_integration_id,
            iframe_id=self.paymob_iframe_id,
            hmac_secret=self.paymob_hmac_secret,
        )

    def public_config(self) -> Dict[str, Any]:
        """Client-safe configuration. Never includes API keys or HMAC secrets."""
        credentials = self.active_credentials()
        return {
            "mode": self.paymob_mode,
            "integrationId": credentials.integration_id,
            "iframeId": credentials.iframe_id,
            "supportedCurrencies": list(self.supported_currencies),
            "minimumAmount": self.minimum_amount_cents,
        }


# Global settings instance
settings = Settings()
