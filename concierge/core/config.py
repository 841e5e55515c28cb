import os
from pydantic_settings import BaseSettings
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

class Settings(BaseSettings):
    # App settings
    APP_NAME: str = os.getenv("APP_NAME", "AI Concierge Service")
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    API_PREFIX: str = os.getenv("API_PREFIX", "/api")
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "4000"))

    # CORS settings
    CORS_ORIGINS: Optional[str] = os.getenv("CORS_ORIGINS")

    # Security settings
    SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-only-secret-key-change-me-in-production")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
    ALGORITHM: str = os.getenv("ALGORITHM", "HS256")

    # AI concierge rate limits
    AI_RATE_LIMIT_MAX_REQUESTS: int = int(os.getenv("AI_RATE_LIMIT_MAX_REQUESTS", "5"))
    AI_RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("AI_RATE_LIMIT_WINDOW_SECONDS", "60"))
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS: int = int(os.getenv("RATE_LIMIT_CLEANUP_INTERVAL_SECONDS", "300"))

    # Upstream AI provider
    AI_PROVIDER_URL: Optional[str] = os.getenv("AI_PROVIDER_URL") or None
    AI_PROVIDER_TIMEOUT_SECONDS: float = float(os.getenv("AI_PROVIDER_TIMEOUT_SECONDS", "20"))
    AI_PROVIDER_RETRY_AFTER_SECONDS: int = int(os.getenv("AI_PROVIDER_RETRY_AFTER_SECONDS", "1"))

    # Client settings
    CONCIERGE_BASE_URL: str = os.getenv("CONCIERGE_BASE_URL", "http://localhost:4000/api")
    CLIENT_REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("CLIENT_REQUEST_TIMEOUT_SECONDS", "30"))
    COOLDOWN_TICK_SECONDS: float = float(os.getenv("COOLDOWN_TICK_SECONDS", "0.25"))
    TOAST_MAX_VISIBLE: int = int(os.getenv("TOAST_MAX_VISIBLE", "3"))
    TOAST_DEFAULT_TTL_SECONDS: float = float(os.getenv("TOAST_DEFAULT_TTL_SECONDS", "5"))

    # Logging settings
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_TO_FILE: bool = os.getenv("LOG_TO_FILE", "False").lower() == "true"

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore"
    }

settings = Settings()
