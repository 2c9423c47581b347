"""
config.py — VeriID Global Configuration
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List


class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    APP_NAME: str = "VeriID"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # API Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./veriid.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Ledger
    LEDGER_STORE: str = "memory"          # memory | sql

    # Blockchain (event anchoring)
    BLOCKCHAIN_BACKEND: str = "simulation"
    WEB3_PROVIDER_URL: str = "http://127.0.0.1:8545"
    CHAIN_ID: int = 1337
    DEPLOYER_PRIVATE_KEY: str = ""

    # Identity protocol
    VERIFICATION_CODE_TTL_MINUTES: int = 5
    ADULT_AGE_THRESHOLD: int = 18
    REFERENCE_PREFIX_DIGITS: int = 4
    LIVENESS_TIMEOUT_SECONDS: float = 30.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "veriid.log"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
