from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

DEFAULT_SECRET_KEY = "your-secret-key-change-this-in-production"

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application
    APP_NAME: str = "CareConnect API"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    TESTING: bool = False

    # Database - SQLite by default, any SQLAlchemy URL works
    DATABASE_URL: str = "sqlite:///./careconnect.db"
    TEST_DATABASE_URL: str = "sqlite:///./test.db"

    # Security
    SECRET_KEY: str = DEFAULT_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    BCRYPT_ROUNDS: int = 12

    # Presence
    PRESENCE_FRESHNESS_MINUTES: int = 5
    PRESENCE_QUEUE_SIZE: int = 100

    # Redis (rate limit counters)
    REDIS_URL: str = "redis://localhost:6379"
    AUTH_RATE_LIMIT_MAX_ATTEMPTS: int = 20
    AUTH_RATE_LIMIT_WINDOW_SECONDS: int = 900
    API_RATE_LIMIT_MAX_REQUESTS: int = 100
    API_RATE_LIMIT_WINDOW_SECONDS: int = 900

    # Audit
    AUDIT_DETAIL_MAX_LENGTH: int = 500

    # CORS / hosts
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080", "http://testserver"]
    ALLOWED_HOSTS: List[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    @property
    def get_database_url(self):
        """Return the appropriate database URL based on if we're testing"""
        if self.TESTING:
            return self.TEST_DATABASE_URL
        return self.DATABASE_URL

    @property
    def uses_default_secret(self) -> bool:
        return self.SECRET_KEY == DEFAULT_SECRET_KEY

# Create settings instance
settings = Settings()
