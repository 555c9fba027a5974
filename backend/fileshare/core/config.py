import os
from functools import lru_cache
from pydantic_settings import BaseSettings
from pydantic import Field, validator
from typing import Optional, Union


class Settings(BaseSettings):
    """
    Application settings with Pydantic validation.
    Loads from environment variables with type checking and validation.
    """
    app_name: str = Field(default="FileShare API", env="APP_NAME")
    environment: str = Field(default="development", env="ENVIRONMENT")

    backend_cors_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        env="BACKEND_CORS_ORIGINS"
    )

    database_url: str = Field(
        default="sqlite:///./fileshare.db",
        env="DATABASE_URL"
    )

    # JWT Authentication - validate non-default
    jwt_secret_key: str = Field(default="dev-secret-key-change-in-production-d8f7g6h5j4k3l2m1n0", env="JWT_SECRET_KEY", min_length=32)
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60, env="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Blob storage (local filesystem)
    blob_storage_path: str = Field(default="./uploads", env="BLOB_STORAGE_PATH")
    upload_max_bytes: int = Field(default=50 * 1024 * 1024, env="UPLOAD_MAX_BYTES")

    # Base for share links; falls back to the request's own scheme+host.
    public_base_url: Optional[str] = Field(default=None, env="PUBLIC_BASE_URL")

    # Rate limiting (Redis optional, in-memory otherwise)
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    rate_limit_enabled: bool = Field(default=True, env="RATE_LIMIT_ENABLED")
    auth_login_rl_ip_per_minute: int = Field(default=20, env="AUTH_LOGIN_RL_IP_PER_MINUTE")
    download_rl_ip_per_minute: int = Field(default=60, env="DOWNLOAD_RL_IP_PER_MINUTE")

    # Sentry
    sentry_dsn: Union[str, None] = Field(default=None, env="SENTRY_DSN")
    sentry_env: str = Field(default="development", env="SENTRY_ENV")

    metrics_token: Optional[str] = Field(default=None, env="METRICS_TOKEN")

    debug: bool = Field(default=True, env="DEBUG")

    @validator("jwt_secret_key")
    def validate_jwt_secret(cls, v: str, values: dict) -> str:
        """Ensure JWT secret is strong in production"""
        env = values.get("environment")
        if env == "production":
            if len(v) < 32 or "dev-secret" in v or "change" in v.lower():
                raise ValueError(
                    "JWT_SECRET_KEY must be a strong, unique secret (min 32 chars) in production. "
                    "Generate with: python3 scripts/generate_secrets.py"
                )
        return v

    @validator("database_url")
    def validate_database_url(cls, v: str, values: dict) -> str:
        """Validate database URL; disallow SQLite in production."""
        env = values.get("environment")
        if env == "production" and v.startswith("sqlite"):
            raise ValueError("SQLite is not allowed for DATABASE_URL in production. Use PostgreSQL.")
        return v

    @validator("upload_max_bytes")
    def validate_upload_max_bytes(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("UPLOAD_MAX_BYTES must be positive.")
        return v

    @validator("debug")
    def validate_debug(cls, v: bool, values: dict) -> bool:
        """Never allow DEBUG=true in production."""
        if values.get("environment") == "production" and v:
            raise ValueError("DEBUG must be false in production.")
        return v

    class Config:
        # Load env file based on ENVIRONMENT; default to development
        env_file = ".env.production" if os.getenv("ENVIRONMENT") == "production" else ".env.development"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Validates all environment variables on first access.
    Raises ValidationError if configuration is invalid.
    """
    return Settings()
