from typing import Literal

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    # Application settings
    app_name: str = "Origo Tenancy Core"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"

    # Database settings
    database_url: str = "sqlite+aiosqlite:///./origo.db"

    # Security settings
    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Shared secret presented by trusted internal services in X-Service-Key.
    # Empty disables explicit tenant selection entirely.
    service_api_key: str = ""

    # Tenant resolution
    app_domain: str = "origo.app"

    # Custom domain verification
    domain_verification_prefix: str = "_origo-verify"
    domain_token_prefix: str = "origo-verify-"
    dns_timeout_seconds: float = 5.0
    dns_nameservers: list[str] = []

    # Quota enforcement: "advisory" counts live rows before each creation,
    # "counter" reserves against tenant_usage_counters inside the caller's transaction.
    quota_mode: Literal["advisory", "counter"] = "advisory"

    # CORS settings
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
