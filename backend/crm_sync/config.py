"""Application configuration."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    
    # Local database (leads, deals, ledger, audit)
    DATABASE_URL: str = "postgresql+asyncpg://crm:crm123@db:5432/crm"
    
    # Scouter-management database (export destination)
    DESTINATION_DATABASE_URL: Optional[str] = None
    DESTINATION_LEADS_TABLE: str = "leads"
    
    # Bitrix24
    BITRIX_DOMAIN: str = "maxsystem.bitrix24.com.br"
    BITRIX_REST_TOKEN: Optional[str] = None
    BITRIX_TIMEOUT: float = 30.0
    
    # Export job
    EXPORT_BATCH_SIZE: int = 100
    EXPORT_BATCH_DELAY_SECONDS: float = 0.5
    
    # Lead enrichment
    DEFAULT_COMMERCIAL_PROJECT_CODE: str = "PINHEIROS"
    
    # Scheduler
    ENABLE_SCHEDULER: bool = True
    PENDING_JOB_SWEEP_MINUTES: int = 10
    
    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
