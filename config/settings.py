from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import pydantic


class Settings(BaseSettings):
    """
    Manages all application settings and secrets.
    Reads from environment variables (and .env file).
    """

    # --- Core Application Configuration ---
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # --- JWT Security (who is the caller?) ---
    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    ALGORITHM: str = "HS256"
    AUTH_COOKIE_NAME: str = "access_token"

    # --- Postback Nonces ---
    # Falls back to SECRET_KEY when not set.
    NONCE_SECRET: str | None = None
    # A nonce window is half of this. Tokens stay valid for two windows.
    NONCE_LIFETIME_SECONDS: int = 86400

    # --- Outbound Postback ---
    SITE_URL: str = "http://localhost:8000"
    POSTBACK_PATH: str = "/api/v1/admin-post"
    POSTBACK_TIMEOUT: float = 0.01
    POSTBACK_CONNECT_TIMEOUT: float = 0.05
    LOCAL_SSL_VERIFY: bool = True

    @pydantic.computed_field
    @property
    def POSTBACK_URL(self) -> str:
        """
        Full URL of our own inbound postback endpoint.
        """
        return f"{self.SITE_URL.rstrip('/')}/{self.POSTBACK_PATH.lstrip('/')}"

    @pydantic.computed_field
    @property
    def NONCE_KEY(self) -> str:
        return self.NONCE_SECRET or self.SECRET_KEY

    # Pydantic-Settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding='utf-8',
        case_sensitive=False
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Returns a cached instance of the Settings object.
    Using @lru_cache ensures the .env file is read only once.
    """
    return Settings()


# Create a single, globally accessible settings instance
settings = get_settings()
