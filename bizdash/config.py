from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "BizDash API"
    database_url: str = Field(default="sqlite:///./bizdash.db")
    log_level: str = "INFO"
    client_url: str = Field(default="*")

    jwt_secret: str = Field(default="dev_secret")
    jwt_algorithm: str = "HS256"
    jwt_expires_minutes: int = 60 * 24 * 7

    demo_email: str = "demo@ai-dashmind.com"
    demo_password: str = "demo123"
    max_login_attempts: int = 5
    lock_minutes: int = 120
    export_limit: int = 10000

    rate_limit_enabled: bool = True
    rate_limit_default: str = "100/15minutes"
    rate_limit_auth: str = "5/15minutes"
    rate_limit_chat: str = "10/minute"

    openai_api_key: Optional[str] = Field(default=None)
    openai_model: str = Field(default="gpt-3.5-turbo")
    openai_api_base: Optional[str] = Field(default=None)
    openai_temperature: float = Field(default=0.7)
    openai_max_tokens: int = Field(default=512)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
