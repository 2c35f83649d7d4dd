from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal

class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # API Settings
    PROJECT_NAME: str = "Debt Ledger API"
    API_V1_STR: str = "/api/v1"
    PROJECT_VERSION: str = "0.1.0"
    DESCRIPTION: str = "Client debt ledger and payment reconciliation API"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "debt_ledger"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["console", "json"] = "console"

    # Ledger policy
    DUE_DATE_GRACE_HOURS: int = 24      # how far in the past a new due date may lie
    OVERDUE_GRACE_DAYS: int = 0         # days after due date before a debt is overdue
    OVERPAYMENT_POLICY: Literal["reject", "credit"] = "reject"
    PAYMENT_MAX_RETRIES: int = 3

    # Reminders
    REMINDER_DEFAULT_LOOKAHEAD_DAYS: int = 3

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env"
    )

settings = Settings()
