from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("sslmode", "require")
    query_params.setdefault("target_session_attrs", "read-write")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///./raffle_sync.db",
        description="SQLAlchemy compatible database URL for the mirror store",
    )
    production_database_url: AnyUrl | str | None = Field(
        default=None,
        description="Pooled Postgres connection string used when ENVIRONMENT=production",
    )
    rpc_url: AnyUrl | str | None = Field(
        default=None,
        description="HTTP JSON-RPC endpoint of the ledger node",
    )
    rpc_timeout_seconds: float = Field(
        default=10.0,
        description="Request timeout applied to ledger RPC calls",
        gt=0,
    )
    chain_id: int = Field(
        default=137,
        description="Chain identifier; keys the sync checkpoint record",
    )
    raffle_contract_address: str | None = Field(
        default=None,
        description="Address of the raffle contract whose events are mirrored",
    )
    sync_api_key: str | None = Field(
        default=None,
        description="Shared secret expected in the x-api-key header of the sync trigger",
    )
    sync_max_workers: int = Field(
        default=5,
        description="Number of raffles synchronized concurrently within one cycle",
        ge=1,
        le=10,
    )
    sync_start_block: int = Field(
        default=0,
        description="Lowest block scanned when no checkpoint has been written yet",
        ge=0,
    )
    sync_checkpoint_write_attempts: int = Field(
        default=2,
        description="Attempts made to persist the checkpoint at the end of a cycle",
        ge=1,
    )
    sync_checkpoint_retry_backoff_seconds: float = Field(
        default=0.5,
        description="Delay between checkpoint write attempts",
        ge=0,
    )

    @field_validator("database_url", "production_database_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value

        if value.startswith("postgresql+psycopg://") or value.startswith(
            "postgresql+asyncpg://"
        ):
            return value

        normalized = value
        if normalized.startswith("postgres://"):
            normalized = "postgresql://" + normalized[len("postgres://") :]

        return normalized

    @field_validator("raffle_contract_address", mode="before")
    @classmethod
    def _validate_contract_address(cls, value: Any) -> str | None:
        if value in (None, ""):
            return None
        if not isinstance(value, str):
            raise ValueError("RAFFLE_CONTRACT_ADDRESS must be a hex string")
        candidate = value.strip()
        body = candidate[2:] if candidate.lower().startswith("0x") else ""
        if len(body) != 40:
            raise ValueError("RAFFLE_CONTRACT_ADDRESS must be a 0x-prefixed 20-byte address")
        try:
            int(body, 16)
        except ValueError as exc:
            raise ValueError("RAFFLE_CONTRACT_ADDRESS must contain only hex digits") from exc
        return "0x" + body.lower()

    @property
    def resolved_database_url(self) -> str:
        environment = self.environment.lower()
        if environment == "production":
            if not self.production_database_url:
                raise ValueError(
                    "PRODUCTION_DATABASE_URL must be set when ENVIRONMENT=production"
                )
            return _ensure_sqlalchemy_postgres_scheme(str(self.production_database_url))
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
