from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    app_name: str = "USDT Billing"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "sqlite:///./usdt_billing.db"
    redis_url: str = "redis://localhost:6379/0"

    # Auth
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    # CORS; an empty list allows every origin
    cors_origins: Annotated[List[str], NoDecode] = []

    # Rate limiting, 0 disables
    rate_limit_per_minute: int = 60

    # Pricing
    pro_price_usdt: Decimal = Decimal("10")
    pro_monthly_credits: int = 1000
    pro_period_days: int = 30
    free_daily_limit: int = 5

    # TRON / TRC20
    tron_full_host: str = "https://api.trongrid.io"
    tron_api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("TRON_API_KEY", "TRONGRID_API_KEY")
    )
    usdt_trc20_contract: str = "TXLAQ63Xg1NAzckPwKHvzw7CSEmLMEqcdj"
    tron_transfer_scan_limit: int = 50
    tron_key_encryption_secret: Optional[str] = None

    # BSC / BEP20
    bsc_rpc_url: str = "https://bsc-dataseed.binance.org"
    bsc_chain_id: int = 56
    usdt_bep20_contract: str = "0x55d398326f99059fF775485246999027B3197955"
    usdt_bep20_decimals: int = 18
    merchant_bsc_address: Optional[str] = None
    merchant_wallet_address: Optional[str] = None

    chain_http_timeout_seconds: float = 15.0

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse comma-separated CORS origins from environment variable."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("pro_price_usdt", "pro_monthly_credits", "pro_period_days", "free_daily_limit")
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be greater than 0")
        return v

    def require(self, name: str) -> str:
        """Return a setting that has no usable default, or fail loudly."""
        value = getattr(self, name, None)
        if not value:
            raise ConfigurationError(name.upper(), "required setting is not configured")
        return value

    @property
    def merchant_bsc(self) -> str:
        address = self.merchant_bsc_address or self.merchant_wallet_address
        if not address:
            raise ConfigurationError("MERCHANT_BSC_ADDRESS", "required setting is not configured")
        return address


settings = Settings()
