from pydantic_settings import BaseSettings
from typing import List, Optional
from enum import Enum


class Environment(str, Enum):

    """Runtime environment"""
    TESTING = "testing"
    PRODUCTION = "production"


class Settings(BaseSettings):

    # Application
    app_name: str = "Academy Checkout"
    app_version: str = "1.0.0"
    environment: Environment = Environment.TESTING
    debug: bool = True
    app_url: str = "http://localhost:3000"

    # Database
    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "academy_db"
    db_user: str = "academy_user"
    db_password: str = "academy_password"

    # Redis (read-mostly checkout caches)
    redis_url: Optional[str] = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    # MercadoPago
    mercadopago_access_token: Optional[str] = None
    mercadopago_webhook_secret: Optional[str] = None
    mercadopago_sandbox: bool = True
    mercadopago_api_url: str = "https://api.mercadopago.com"
    mercadopago_timeout: float = 15.0
    webhook_max_age_seconds: int = 300
    webhook_clock_skew_seconds: int = 60

    # Pricing
    default_usd_to_uyu_rate: int = 42

    # Email (Resend)
    resend_api_key: Optional[str] = None
    resend_api_url: str = "https://api.resend.com"
    email_from: str = "academy@tinta.wine"
    admin_notification_emails: List[str] = []

    # Transfer proof uploads
    upload_dir: str = "./uploads"
    upload_public_base_url: str = "http://localhost:8000/uploads"
    upload_max_bytes: int = 10 * 1024 * 1024
    upload_allowed_types: List[str] = [
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
    ]

    # Logging
    log_level: str = "INFO"

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def database_url_computed(self) -> str:
        """Compose the database URL"""
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def redis_url_computed(self) -> str:
        """Compose the Redis URL"""
        if self.redis_url:
            return self.redis_url
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def webhook_url(self) -> str:
        return f"{self.app_url.rstrip('/')}/webhooks/mercadopago"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
