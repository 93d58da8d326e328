# backend/config.py
from pydantic_settings import BaseSettings
from typing import ClassVar
from pathlib import Path

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"

class Settings(BaseSettings):
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    DATABASE_URL: str = "sqlite:///./storefront.db"

    # Flutterwave gateway
    FLW_API_URL: str = "https://api.flutterwave.com/v3"
    FLW_SECRET_KEY: str
    FLW_SECRET_HASH: str
    FLW_CURRENCY: str = "NGN"

    # Customer is sent back here after the hosted payment page
    FRONTEND_URL: str

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file: ClassVar[str] = str(env_path)

    @property
    def payment_redirect_url(self) -> str:
        return f"{self.FRONTEND_URL.rstrip('/')}/payment/callback"

settings = Settings()
