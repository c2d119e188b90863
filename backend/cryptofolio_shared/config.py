from typing import ClassVar, List

from pydantic_settings import BaseSettings, SettingsConfigDict
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from pydantic import model_validator

from cryptofolio_shared.logging_config import setup_logging, get_logger


class Settings(BaseSettings):
    # .env
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "cryptofolio"
    DB_ECHO: bool = False

    # CoinGecko
    COINGECKO_API_URL: str = "https://api.coingecko.com/api/v3"
    COINGECKO_TIMEOUT_SECONDS: float = 10.0
    DEFAULT_CURRENCY: str = "usd"

    # Portfolio
    DEFAULT_PORTFOLIO_NAME: str = "Default Portfolio"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Authorization
    pwd_context: ClassVar[CryptContext] = CryptContext(
        schemes=["bcrypt"], deprecated="auto"
    )
    oauth2_scheme: ClassVar[OAuth2PasswordBearer] = OAuth2PasswordBearer(
        tokenUrl="token"
    )

    # Derived
    DATABASE_URL: str = ""

    # Helpful
    LOG_FILE: str = "logs/cryptofolio.log"
    TIMEZONE: str = "UTC"

    @model_validator(mode="after")
    def compute_derived_settings(self):
        if not self.DATABASE_URL:
            self.DATABASE_URL = (
                f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
                f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
            )
        return self

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


settings = Settings()
setup_logging(settings.LOG_FILE, settings.TIMEZONE)
logger = get_logger("global")
