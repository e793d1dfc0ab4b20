"""
GITOPS RBAC Configuration

Environment-based settings for the access-control core and its API.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "GitOps RBAC"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    # Audit database
    DATABASE_URL: str = "sqlite+aiosqlite:///./audit.db"
    DATABASE_ECHO: bool = False

    # Audit retention
    AUDIT_RETENTION_DAYS: int = 90
    AUDIT_ARCHIVE_DIR: str = "./audit-archive"

    # Policy document loaded at startup (YAML or JSON)
    POLICY_PATH: Optional[str] = None

    # OIDC claim verification
    OIDC_ISSUERS: list[str] = []
    OIDC_AUDIENCE: Optional[str] = None
    OIDC_SECRET: Optional[str] = None
    OIDC_PUBLIC_KEY: Optional[str] = None
    OIDC_JWKS_URL: Optional[str] = None
    OIDC_ALGORITHMS: list[str] = ["RS256"]
    OIDC_GROUPS_CLAIM: str = "groups"
    OIDC_LEEWAY_SECONDS: int = 30

    class Config:
        env_prefix = "GITOPS_RBAC_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stream handler on the package logger."""
    level = (level or get_settings().LOG_LEVEL).upper()
    root = logging.getLogger("gitops_rbac")
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
        root.addHandler(handler)
