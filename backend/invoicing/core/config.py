"""
Application settings loaded from environment variables or .env file.

Priority:
  1. Environment variables (always win)
  2. .env file in project root (local dev)
  3. Defaults

When ENVIRONMENT=production and DB credentials are not set, they are fetched
from AWS Secrets Manager at /invoicing/db/credentials.

DATABASE_URL_OVERRIDE short-circuits credential resolution entirely
(e.g. sqlite+aiosqlite:///./invoicing.db for a throwaway local run).
"""
import json
import logging
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from invoicing.services.formatting import validate_prefix

logger = logging.getLogger(__name__)

_repo_root = Path(__file__).resolve().parents[3]  # backend/ → project root


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_repo_root / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    environment: str = "development"

    # ------------------------------------------------------------------ #
    # Database
    # ------------------------------------------------------------------ #
    db_host: str = ""
    db_port: int = 5432
    db_name: str = "invoicing"
    db_user: str = "postgres"
    db_password: str = ""

    # Local dev overrides (used when ENVIRONMENT=development)
    local_db_host: str = "localhost"
    local_db_port: int = 5433
    local_db_name: str = "invoicing_dev"
    local_db_user: str = "postgres"
    local_db_password: str = "localpassword"

    database_url_override: str = ""

    # ------------------------------------------------------------------ #
    # AWS
    # ------------------------------------------------------------------ #
    aws_region: str = "eu-west-3"

    # ------------------------------------------------------------------ #
    # Invoice numbering
    # ------------------------------------------------------------------ #
    invoice_default_prefix: str = "FA"
    invoice_number_width: int = 5
    numbering_max_attempts: int = 3
    numbering_lock_timeout_ms: int = 5000
    numbering_timezone: str = "Europe/Paris"

    # ------------------------------------------------------------------ #
    # Computed properties
    # ------------------------------------------------------------------ #

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def database_url(self) -> str:
        """Async asyncpg URL."""
        if self.database_url_override:
            return self.database_url_override
        host, port, name, user, password = self._resolve_db_credentials()
        return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"

    @property
    def database_url_sync(self) -> str:
        """Sync psycopg2 URL (Alembic)."""
        host, port, name, user, password = self._resolve_db_credentials()
        return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{name}"

    def _resolve_db_credentials(self) -> tuple[str, int, str, str, str]:
        if self.is_development:
            return (
                self.local_db_host,
                self.local_db_port,
                self.local_db_name,
                self.local_db_user,
                self.local_db_password,
            )

        host = self.db_host
        password = self.db_password
        user = self.db_user

        # Pull from Secrets Manager if host set but password missing
        if host and not password:
            password, user = self._fetch_db_credentials_from_secrets_manager(user)

        if not host:
            raise RuntimeError("DB_HOST is not set. Update your .env or environment.")

        return host, self.db_port, self.db_name, user, password

    def _fetch_db_credentials_from_secrets_manager(
        self, default_user: str
    ) -> tuple[str, str]:
        try:
            import boto3

            client = boto3.client("secretsmanager", region_name=self.aws_region)
            secret = client.get_secret_value(SecretId="/invoicing/db/credentials")
            creds = json.loads(secret["SecretString"])
            return creds.get("password", ""), creds.get("username", default_user)
        except Exception as exc:
            logger.error("Failed to retrieve DB credentials from Secrets Manager: %s", exc)
            raise RuntimeError("Cannot connect to database: missing credentials") from exc

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v.lower() not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of {allowed}")
        return v.lower()

    @field_validator("invoice_default_prefix")
    @classmethod
    def validate_default_prefix(cls, v: str) -> str:
        return validate_prefix(v)

    @field_validator("invoice_number_width")
    @classmethod
    def validate_number_width(cls, v: int) -> int:
        if v < 5:
            raise ValueError("INVOICE_NUMBER_WIDTH must be at least 5")
        return v

    @field_validator("numbering_max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("NUMBERING_MAX_ATTEMPTS must be at least 1")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
