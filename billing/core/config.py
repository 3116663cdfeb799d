from pydantic_settings import BaseSettings
from pydantic import model_validator
from urllib.parse import quote_plus
import os

class Settings(BaseSettings):
    APP_ENV: str = "local"
    LOCAL_URL: str = "http://127.0.0.1:8000"

    # Database URL - can be provided directly or constructed from components
    DATABASE_URL: str | None = None
    SQL_ECHO: bool = False

    # Individual database components (for constructing DATABASE_URL)
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_NAME: str = ""

    # Billing rules
    DEFAULT_CURRENCY: str = "DZD"
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100
    CREDIT_OVERPAYMENTS: bool = False
    TOP_CLIENTS_LIMIT: int = 5

    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    class Config:
        env_file = ".env" if os.getenv("APP_ENV", "local") == "local" else ".env.prod"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @model_validator(mode='after')
    def construct_database_url(self):
        """Construct DATABASE_URL from components if not provided directly."""
        if not self.DATABASE_URL:
            if self.DB_NAME:
                # URL encode password to handle special characters
                password_part = f":{quote_plus(self.DB_PASSWORD)}" if self.DB_PASSWORD else ""
                self.DATABASE_URL = f"postgresql://{self.DB_USER}{password_part}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            else:
                self.DATABASE_URL = "sqlite:///./billing.db"

        self.DEFAULT_CURRENCY = self.DEFAULT_CURRENCY.upper()

        # Ensure DATABASE_URL is always a string after validation
        assert self.DATABASE_URL is not None, "DATABASE_URL must be set"
        return self

    @property
    def database_url(self) -> str:
        """Get DATABASE_URL as a guaranteed string."""
        assert self.DATABASE_URL is not None, "DATABASE_URL must be set"
        return self.DATABASE_URL

settings = Settings()
