"""
Service settings

Everything is read from environment variables once at startup and passed
around explicitly. Without DATABASE_URL the app runs on the in-process memory
backend, which only development and test environments may use.
"""

import os
from typing import List, Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    service_name: str = "scentshop-orders"
    database_url: Optional[str] = Field(None, description="MongoDB connection string")
    database_name: str = Field("scentshop", description="MongoDB database name")
    order_transaction_timeout_ms: int = Field(10000, gt=0)
    order_number_max_attempts: int = Field(10, ge=1)
    log_level: str = "INFO"
    log_file: Optional[str] = None
    port: int = 8000
    environment: str = "production"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @property
    def debug(self) -> bool:
        return self.environment == "development"

    @property
    def allows_memory_backend(self) -> bool:
        return self.environment in ("development", "test")

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL") or None,
            database_name=os.getenv("DATABASE_NAME", "scentshop"),
            order_transaction_timeout_ms=int(os.getenv("ORDER_TRANSACTION_TIMEOUT_MS", 10000)),
            order_number_max_attempts=int(os.getenv("ORDER_NUMBER_MAX_ATTEMPTS", 10)),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE") or None,
            port=int(os.getenv("PORT", 8000)),
            environment=os.getenv("ENVIRONMENT", "production"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
