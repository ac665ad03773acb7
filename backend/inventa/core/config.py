from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    app_env: str = "dev"
    database_url: str = "postgresql+asyncpg://inventa:inventa@db:5432/inventa"
    db_echo: bool = False
    log_level: str = "INFO"

    # Human-readable document codes, e.g. REQ/20260101/7KX2A and PO/2026/Q4M81Z
    request_code_prefix: str = "REQ"
    procurement_code_prefix: str = "PO"

    opname_reason_min_length: int = 3


settings = Settings()
