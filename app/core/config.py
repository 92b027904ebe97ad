from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.rate_limit import RateLimitRule

DEFAULT_AUTH_SECRET = "local-dev-storefront-auth-secret-change-me"


class Settings(BaseSettings):
    app_env: str = "local"
    api_port: int = 8000
    log_level: str = "INFO"
    log_json: bool = True

    postgres_host: str = "127.0.0.1"
    postgres_port: int = 5432
    postgres_db: str = "storefront_realtime"
    postgres_user: str = "storefront"
    postgres_password: str = "storefront_password"
    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL_OVERRIDE", "DATABASE_URL"),
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_auto_create: bool = False

    auth_token_secret: str = DEFAULT_AUTH_SECRET
    auth_token_ttl_minutes: int = 480
    visitor_session_header: str = "X-Visitor-Session-Id"
    cors_allowed_origins_raw: str = "http://127.0.0.1:5173,http://localhost:5173"
    trusted_hosts_raw: str = "127.0.0.1,localhost,testserver"
    force_https: bool = False

    visitor_message_rate_limit: int = 20
    visitor_message_rate_window_seconds: int = 60
    bid_rate_limit: int = 10
    bid_rate_window_seconds: int = 10

    open_conversation_attempts: int = 3
    conversation_page_size_max: int = 100
    auction_extension_min_minutes: int = 1
    auction_extension_max_minutes: int = 1440
    auction_live_recent_bids: int = 5

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cors_allowed_origins(self) -> list[str]:
        return [
            origin.strip()
            for origin in self.cors_allowed_origins_raw.split(",")
            if origin.strip()
        ]

    @property
    def trusted_hosts(self) -> list[str]:
        return [
            host.strip() for host in self.trusted_hosts_raw.split(",") if host.strip()
        ]

    @property
    def visitor_message_rule(self) -> RateLimitRule:
        return RateLimitRule(
            limit=self.visitor_message_rate_limit,
            window_seconds=self.visitor_message_rate_window_seconds,
        )

    @property
    def bid_rule(self) -> RateLimitRule:
        return RateLimitRule(
            limit=self.bid_rate_limit,
            window_seconds=self.bid_rate_window_seconds,
        )

    def validate_security_settings(self) -> None:
        if self.app_env.lower() != "production":
            return

        if self.auth_token_secret == DEFAULT_AUTH_SECRET:
            raise ValueError("AUTH_TOKEN_SECRET must be overridden in production.")
        if len(self.auth_token_secret) < 32:
            raise ValueError(
                "AUTH_TOKEN_SECRET must be at least 32 characters in production."
            )
        if not self.cors_allowed_origins:
            raise ValueError(
                "CORS_ALLOWED_ORIGINS_RAW must define explicit origins in production."
            )
        if "*" in self.cors_allowed_origins:
            raise ValueError("Wildcard CORS origin is not allowed in production.")
        if not self.trusted_hosts:
            raise ValueError(
                "TRUSTED_HOSTS_RAW must define explicit hosts in production."
            )
        if "*" in self.trusted_hosts:
            raise ValueError("Wildcard trusted host is not allowed in production.")


@lru_cache
def get_settings() -> Settings:
    return Settings()
