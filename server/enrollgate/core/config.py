# pyright: reportMissingImports=false

from __future__ import annotations

from functools import lru_cache
import json
from typing import Annotated, ClassVar, cast

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings with local dev defaults."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=None,
        case_sensitive=False,
        extra="ignore",
    )

    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    env: str = "dev"

    cors_allowed_origins: Annotated[list[str], NoDecode] = Field(default_factory=list)
    trusted_hosts: Annotated[list[str], NoDecode] = Field(default_factory=list)

    # Maintenance switch, read once when the app is built.
    lockdown: bool = False

    # Default deadline for a single redemption; 0 disables it.
    redeem_timeout_seconds: float = 5.0

    # Shared secret for the provisioning endpoint; empty disables the endpoint.
    admin_sync_secret: str = ""

    # Failed redemptions allowed per client address and per identity within the window.
    redeem_rate_limit_enabled: bool = True
    redeem_rate_limit_max_failures: int = 10
    redeem_rate_limit_window_seconds: int = 300

    entitlement_cache_ttl_seconds: float = 30.0
    entitlement_cache_max_entries: int = 1024

    # Lowest tier first.
    plan_order: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["free", "school-basic", "school-pro", "district"]
    )

    # Prefer DATABASE_URL when provided; otherwise construct from POSTGRES_* vars.
    database_url: str | None = None
    postgres_db: str = "enrollgate"
    postgres_user: str = "enrollgate"
    postgres_password: str = "enrollgate"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    sqlite_busy_timeout_seconds: float = 30.0

    @field_validator("cors_allowed_origins", "trusted_hosts", "plan_order", mode="before")
    @classmethod
    def _parse_listish_env(cls, v: object) -> list[str]:
        if v is None:
            return []
        if isinstance(v, list):
            v_list = cast(list[object], v)
            return [str(x).strip() for x in v_list if str(x).strip()]
        if isinstance(v, str):
            raw = v.strip()
            if raw == "":
                return []
            if raw.lstrip().startswith("["):
                try:
                    parsed: object = cast(object, json.loads(raw))
                except Exception:
                    parsed = None
                if isinstance(parsed, list):
                    parsed_list = cast(list[object], parsed)
                    return [str(x).strip() for x in parsed_list if str(x).strip()]
            parts: list[str] = []
            for chunk in raw.replace("\n", ",").replace("\t", ",").split(","):
                s = chunk.strip()
                if s:
                    parts.append(s)
            return parts
        return [str(v).strip()] if str(v).strip() else []

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    def _is_prod_env(self) -> bool:
        return self.env.strip().lower() in ("prod", "production")

    @model_validator(mode="after")
    def _validate_prod_config(self) -> "Settings":
        if not self._is_prod_env():
            return self

        problems: list[str] = []

        if self.admin_sync_secret.strip() == "":
            problems.append("ADMIN_SYNC_SECRET must be set in production.")

        if self.sqlalchemy_database_uri.startswith("sqlite"):
            problems.append("DATABASE_URL must point at PostgreSQL in production (sqlite is dev-only).")

        if problems:
            details = "\n".join(f"- {p}" for p in problems)
            raise ValueError(
                f"Production settings validation failed (ENV={self.env!r}). Fix the following before starting the server:\n"
                + details
            )

        return self

    @model_validator(mode="after")
    def _validate_limits(self) -> "Settings":
        if self.redeem_timeout_seconds < 0:
            raise ValueError("REDEEM_TIMEOUT_SECONDS must be >= 0")
        if self.redeem_rate_limit_max_failures < 0:
            raise ValueError("REDEEM_RATE_LIMIT_MAX_FAILURES must be >= 0")
        if self.redeem_rate_limit_window_seconds < 0:
            raise ValueError("REDEEM_RATE_LIMIT_WINDOW_SECONDS must be >= 0")
        if self.entitlement_cache_max_entries <= 0:
            raise ValueError("ENTITLEMENT_CACHE_MAX_ENTRIES must be > 0")
        if self.entitlement_cache_ttl_seconds < 0:
            raise ValueError("ENTITLEMENT_CACHE_TTL_SECONDS must be >= 0")
        if len(set(self.plan_order)) != len(self.plan_order):
            raise ValueError("PLAN_ORDER must not contain duplicates")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
