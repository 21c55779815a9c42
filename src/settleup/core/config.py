from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings
from dotenv import load_dotenv
import os

load_dotenv()

class Settings(BaseSettings):
    # Database - SQLite as default for easy start
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./settleup.db")
    
    # Amounts at or below this are treated as zero when balancing
    SETTLEMENT_TOLERANCE: Decimal = Decimal(os.getenv("SETTLEMENT_TOLERANCE", "0.01"))
    
    # Stamped on new expenses and payments, never converted
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "USD")
    
    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = os.getenv("DEBUG", "true").lower() == "true"
    
    # Sentry error tracking - optional
    SENTRY_DSN: Optional[str] = os.getenv("SENTRY_DSN", None)
    
    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        case_sensitive = True
        extra = 'ignore'

# Create settings instance
settings = Settings()
