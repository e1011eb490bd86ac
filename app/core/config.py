# backend/app/core/config.py

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True
    )

    # --- App Info ---
    APP_NAME: str = "Forex Trading Gateway"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # --- Server ---
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 5000

    # --- CORS ---
    CORS_ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    # --- Security (local bearer tokens) ---
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 24

    # Cached upstream sessions live as long as the token that points at them
    SESSION_TTL_HOURS: int = 24
    SESSION_SWEEP_INTERVAL_SECONDS: float = 300.0

    # --- Upstream HTTP ---
    UPSTREAM_TIMEOUT_SECONDS: float = 30.0

    # --- Broker Integrations (Capital.com) ---
    CAPITAL_COM_API_KEY: str = ""
    CAPITAL_COM_DEMO_MODE: bool = True
    CAPITAL_COM_DEMO_URL: str = "https://demo-api-capital.backend-capital.com/api/v1"
    CAPITAL_COM_LIVE_URL: str = "https://api-capital.backend-capital.com/api/v1"

    # --- Broker Integrations (MetaTrader 5 via MetaApi) ---
    METAAPI_TOKEN: Optional[str] = None
    MT5_DEPLOY_TIMEOUT_SECONDS: int = 60
    MT5_MAGIC: int = 123456
    MT5_ACCOUNT_TYPE: str = "cloud"

    @property
    def capital_com_base_url(self) -> str:
        return self.CAPITAL_COM_DEMO_URL if self.CAPITAL_COM_DEMO_MODE else self.CAPITAL_COM_LIVE_URL

settings = Settings()
