from pydantic_settings import BaseSettings
from pydantic import BaseModel, ConfigDict, field_validator
from typing import Optional, List, Union, Dict


class Settings(BaseSettings):
    # Database
    database_url: str

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_password: Optional[str] = None
    redis_db: int = 0

    # Firebase
    firebase_project_id: str
    firebase_credentials_path: str

    # API
    api_v1_str: str = "/api/v1"

    # Environment
    environment: str = "development"
    log_level: str = "INFO"

    # Encryption (Fernet key for exchange credentials)
    encryption_key: str

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_basic_price_id: str = ""
    stripe_premium_price_id: str = ""
    frontend_url: str = "http://localhost:3000"

    # Access control / limits
    admin_user_ids: Union[List[str], str] = []
    bot_create_lock_enabled: bool = True
    rate_limit_enabled: bool = True

    # CORS
    cors_origins: Union[List[str], str] = ["http://localhost:3000"]

    @field_validator('cors_origins', 'admin_user_ids', mode='before')
    @classmethod
    def parse_comma_separated(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse list settings from environment variable (comma-separated) or use default list."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(',') if item.strip()]
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields from environment


class BillingConfig(BaseModel):
    """Stripe configuration injected into the webhook reconciler and session issuer"""
    model_config = ConfigDict(frozen=True)

    stripe_secret_key: str
    webhook_secret: str
    frontend_url: str
    price_plans: Dict[str, str]  # Stripe price id -> plan name

    @classmethod
    def from_settings(cls, source: "Settings") -> "BillingConfig":
        price_plans = {}
        if source.stripe_basic_price_id:
            price_plans[source.stripe_basic_price_id] = "Basic"
        if source.stripe_premium_price_id:
            price_plans[source.stripe_premium_price_id] = "Premium"
        return cls(
            stripe_secret_key=source.stripe_secret_key,
            webhook_secret=source.stripe_webhook_secret,
            frontend_url=source.frontend_url.rstrip('/'),
            price_plans=price_plans,
        )

    def plan_for_price(self, price_id: Optional[str]) -> str:
        """Map a Stripe price id to a plan name, 'Unknown' when not configured"""
        if not price_id:
            return "Unknown"
        return self.price_plans.get(price_id, "Unknown")


settings = Settings()
