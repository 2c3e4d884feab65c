from pathlib import Path

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings

from .exceptions import ConfigurationError

# .env at the project root: marketplace/core/config.py -> marketplace/core -> marketplace -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

SUPPORTED_CURRENCIES = ("MXN", "USD")


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./marketplace.db"
    # Comma separated origin list; "*" allows everything
    cors_origins: str = "*"
    # Payment initiation has its own, stricter limit
    rate_limit_payment_per_minute: int = 10
    admin_secret: str = ""
    environment: str = "development"

    # MITEC 3-D Secure gateway
    mitec_environment: str = "sandbox"
    mitec_key_hex: str = ""
    mitec_id_company: str = ""
    mitec_id_branch: str = "1"
    mitec_country: str = "MEX"
    mitec_bs_user: str = ""
    mitec_bs_pwd: str = ""
    mitec_data0: str = ""
    mitec_3ds_url: str = ""
    mitec_response_url: str = ""
    mitec_merchant_amex: str = ""
    mitec_merchant_visa: str = ""
    mitec_merchant_mastercard: str = ""
    mitec_merchant_default: str = ""
    mitec_test_ip: str = "127.0.0.1"
    mitec_default_currency: str = "MXN"
    mitec_default_cobro: str = "1"
    mitec_min_amount: float = 0.01
    mitec_max_amount: float = 999999.99
    mitec_billing_required: bool = False

    payment_session_ttl_minutes: int = 10
    # Failed payment: completed cart is reopened for this many days
    cart_retry_days: int = 7
    # Last-resort session matching window for callbacks with a mangled reference
    reconciliation_recency_hours: int = 2
    tax_rate: float = 0.16

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("mitec_key_hex", "mitec_data0", "mitec_bs_user", "mitec_bs_pwd", mode="before")
    @classmethod
    def strip_secret(cls, v: str | None) -> str:
        """Trailing whitespace from copy/paste breaks the cipher key and credentials."""
        return (v or "").strip()

    @field_validator("mitec_default_currency", mode="before")
    @classmethod
    def upper_currency(cls, v: str | None) -> str:
        return (v or "MXN").strip().upper()


settings = Settings()


class ProviderConfig(BaseModel):
    """Everything the payload builder and initiation service need from the environment.

    Built once at startup and injected; services never read ``settings`` for provider values.
    """

    environment: str
    key_hex: str
    id_company: str
    id_branch: str
    country: str
    bs_user: str
    bs_pwd: str
    data0: str
    three_ds_url: str
    response_url: str
    merchants: dict[str, str]
    test_ip: str = ""
    default_currency: str = "MXN"
    default_cobro: str = "1"
    min_amount: float = 0.01
    max_amount: float = 999999.99
    billing_required: bool = False

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_settings(cls, s: Settings | None = None, validate: bool = True) -> "ProviderConfig":
        s = s or settings
        config = cls(
            environment=s.mitec_environment,
            key_hex=s.mitec_key_hex,
            id_company=s.mitec_id_company,
            id_branch=s.mitec_id_branch,
            country=s.mitec_country,
            bs_user=s.mitec_bs_user,
            bs_pwd=s.mitec_bs_pwd,
            data0=s.mitec_data0,
            three_ds_url=s.mitec_3ds_url,
            response_url=s.mitec_response_url,
            merchants={
                "amex": s.mitec_merchant_amex,
                "visa": s.mitec_merchant_visa,
                "mastercard": s.mitec_merchant_mastercard,
                "default": s.mitec_merchant_default,
            },
            test_ip=s.mitec_test_ip,
            default_currency=s.mitec_default_currency,
            default_cobro=s.mitec_default_cobro,
            min_amount=s.mitec_min_amount,
            max_amount=s.mitec_max_amount,
            billing_required=s.mitec_billing_required,
        )
        if validate:
            config.validate_required()
        return config

    def missing(self) -> list[str]:
        """Env var names of required values that are empty."""
        required = {
            "MITEC_KEY_HEX": self.key_hex,
            "MITEC_ID_COMPANY": self.id_company,
            "MITEC_ID_BRANCH": self.id_branch,
            "MITEC_COUNTRY": self.country,
            "MITEC_BS_USER": self.bs_user,
            "MITEC_BS_PWD": self.bs_pwd,
            "MITEC_DATA0": self.data0,
            "MITEC_3DS_URL": self.three_ds_url,
            "MITEC_RESPONSE_URL": self.response_url,
        }
        out = [name for name, value in required.items() if not (value or "").strip()]
        if not (self.merchants.get("default") or "").strip():
            out.append("MITEC_MERCHANT_DEFAULT")
        return out

    def validate_required(self) -> None:
        missing = self.missing()
        if missing:
            raise ConfigurationError(
                "MITEC configuration incomplete: " + ", ".join(missing),
                missing=missing,
            )
