from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


DEFAULT_FUNDING_TIERS = (500, 1000, 2000, 3000, 4000, 5000, 10000)


class EngineConfig(BaseModel):
    """Business constants handed to each engine at construction."""

    commission_rate: Decimal = Decimal("0.01")
    min_order_amount: Decimal = Decimal("100")
    fee_percentage: Decimal = Decimal("2.5")
    min_withdrawal: Decimal = Decimal("1000")
    gift_reward: Decimal = Decimal("10")
    funding_tiers: tuple[int, ...] = DEFAULT_FUNDING_TIERS
    min_subscriber_target: int = 50
    ocr_timeout_seconds: float = 15.0

    model_config = ConfigDict(frozen=True)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Runtime
    environment: str = Field(default="production", description="production | development | test")
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=True, description="Render logs as JSON lines")

    # Referral commissions
    commission_rate: Decimal = Field(default=Decimal("0.01"), description="Referral commission rate (0.01 = 1%)")
    min_order_amount: Decimal = Field(default=Decimal("100"), description="Minimum order amount earning commission")

    # Withdrawals
    fee_percentage: Decimal = Field(default=Decimal("2.5"), description="Withdrawal fee in percent")
    min_withdrawal: Decimal = Field(default=Decimal("1000"), description="Minimum net withdrawal amount")

    # Orders and subscriptions
    gift_reward: Decimal = Field(default=Decimal("10"), description="Gift credits per verified subscription")
    funding_tiers: tuple[int, ...] = Field(default=DEFAULT_FUNDING_TIERS, description="Allowed order funding amounts")

    # OCR
    ocr_timeout_seconds: float = Field(default=15.0, description="Upper bound for one OCR extraction")
    ocr_language: str = Field(default="eng", description="Tesseract language pack")

    # Security
    encryption_secret: str = Field(..., description="Secret used to derive the bank details key")
    encryption_salt: str = Field(..., description="Salt used to derive the bank details key")

    # Uploads
    upload_dir: str = Field(default="./uploads", description="Directory for stored images")
    upload_base_url: str = Field(default="/uploads", description="Public URL prefix for stored images")

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            commission_rate=self.commission_rate,
            min_order_amount=self.min_order_amount,
            fee_percentage=self.fee_percentage,
            min_withdrawal=self.min_withdrawal,
            gift_reward=self.gift_reward,
            funding_tiers=self.funding_tiers,
            ocr_timeout_seconds=self.ocr_timeout_seconds,
        )
