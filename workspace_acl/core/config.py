"""
Configuration Management
Loads settings from environment variables with type validation
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "Workspace ACL"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # PostgreSQL
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "workspace"
    POSTGRES_PASSWORD: str = "workspace_password"
    POSTGRES_DB: str = "workspace"

    # Full SQLAlchemy URL, overrides the POSTGRES_* parts when set
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def POSTGRES_URL(self) -> str:
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def SQLALCHEMY_URL(self) -> str:
        return self.DATABASE_URL or self.POSTGRES_URL

    # Permissions
    PERMISSION_CACHE_TTL_SECONDS: int = Field(30, gt=0)
    HIERARCHY_MAX_DEPTH: int = Field(256, gt=0)
    REBUILD_TIMEOUT_SECONDS: float = Field(30.0, gt=0)
    BATCH_CHECK_TIMEOUT_SECONDS: float = Field(5.0, gt=0)
    REBUILD_MODE: str = "background"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid = ["development", "test", "staging", "production"]
        if v not in valid:
            raise ValueError(f"ENVIRONMENT must be one of {valid}")
        return v

    @field_validator("REBUILD_MODE")
    @classmethod
    def validate_rebuild_mode(cls, v: str) -> str:
        valid = ["background", "sync"]
        v_lower = v.lower()
        if v_lower not in valid:
            raise ValueError(f"REBUILD_MODE must be one of {valid}")
        return v_lower

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}")
        return v_upper

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "allow"


# Global settings instance
settings = Settings()
