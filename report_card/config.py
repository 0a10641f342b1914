import os
from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Scoring settings
    CONTINUOUS_SCALE: float = 20
    PROJECT_MAX_SCORE: float = 10
    EOT_MAX_SCORE: float = 80

    # A subject counts as passed when its total reaches this mark
    PASS_THRESHOLD: float = 50

    # Promotion overrides
    MIN_OVERRIDE_REASON_LENGTH: int = 10

    # Logging settings
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

# Create settings instance
settings = Settings()
