from typing import List, Optional, Any
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # API Settings
    PROJECT_NAME: str = "AWS Cost Guard"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")

    # AWS Configuration
    AWS_REGION: str = Field(default="us-east-1")
    COST_EXPLORER_REGION: str = Field(default="us-east-1")  # Cost Explorer only lives here
    AWS_RETRY_DELAY_SECONDS: float = 1.0
    AWS_MAX_WORKERS: int = 5

    # CORS Settings
    BACKEND_CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173", "http://localhost"]
    )

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Any) -> List[str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            if isinstance(v, str):
                v = json.loads(v)
            return v
        raise ValueError("Invalid CORS origins format")

    # Monitoring
    SENTRY_DSN: Optional[str] = None

    # Cost data cache
    COST_CACHE_TTL_SECONDS: int = 900  # 15 minutes
    DEFAULT_LOOKBACK_DAYS: int = 30

    # Shareable snapshots
    SHARE_DEFAULT_TTL_HOURS: int = 24
    SHARE_CLEANUP_INTERVAL_SECONDS: int = 3600

    # Uploads
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024  # 10MB

    # Budgets
    DEFAULT_ALERT_THRESHOLDS: List[float] = Field(default=[50, 80, 100])
    DEMO_ACCOUNT_ID: str = "demo"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"


settings = Settings()
