"""
Configurazione applicativa del motore e-Fatura
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class DatabaseSettings(BaseSettings):
    """Configurazione database"""

    database_url: str = Field(default="sqlite:///./efatura.db", env="DATABASE_URL")
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


class GibSettings(BaseSettings):
    """Configurazione client portale GIB"""

    # Endpoint WSDL
    gib_test_wsdl_url: str = Field(
        default="https://efaturaportaltest.gib.gov.tr/FaturaBilgiService.svc?wsdl",
        env="GIB_TEST_WSDL_URL"
    )
    gib_prod_wsdl_url: str = Field(
        default="https://efaturaportal.gib.gov.tr/FaturaBilgiService.svc?wsdl",
        env="GIB_PROD_WSDL_URL"
    )

    # Trasporto
    gib_timeout: float = Field(default=30.0, env="GIB_TIMEOUT")  # secondi
    gib_user_agent: str = Field(default="LaundryPro-EFatura/1.0", env="GIB_USER_AGENT")

    # Retry per errori ritentabili (SYSTEM_ERROR, SOAP_ERROR)
    gib_max_retries: int = Field(default=3, env="GIB_MAX_RETRIES")
    gib_retry_backoff_base: float = Field(default=1.0, env="GIB_RETRY_BACKOFF_BASE")

    # Operazioni massive
    gib_sync_batch_size: int = Field(default=50, env="GIB_SYNC_BATCH_SIZE")
    gib_pending_batch_size: int = Field(default=10, env="GIB_PENDING_BATCH_SIZE")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_database_settings() -> DatabaseSettings:
    """Get cached database settings instance"""
    return DatabaseSettings()


@lru_cache()
def get_gib_settings() -> GibSettings:
    """Get cached GIB settings instance"""
    return GibSettings()
