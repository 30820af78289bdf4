from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str

    REDIS_URL: str

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 24 hours

    PRICING_CONFIG_CACHE_TTL: int = 30  # seconds
    PRICE_CACHE_TTL: int = 60   # 60 seconds

    PRICING_HISTORY_DEFAULT_LIMIT: int = 25
    PRICING_HISTORY_MAX_LIMIT: int = 200
    PRICING_UPDATE_MAX_RETRIES: int = 3

    API_TITLE: str = "DriveDrop Pricing Service"
    API_DESCRIPTION: str = "Dynamic pricing configuration and vehicle shipping quotes"
    API_VERSION: str = "1.0.0"

    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
