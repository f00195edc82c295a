"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── TiDB (MySQL-protocol compatible) ───────────────────────────────────
    tidb_host: str = "tidb"
    tidb_port: int = 4000
    tidb_user: str = "root"
    tidb_password: str = ""
    tidb_database: str = "social_feed"
    # Full SQLAlchemy URL; takes precedence over the tidb_* fields when set
    database_url: Optional[str] = None

    @property
    def tidb_url(self) -> str:
        return (
            f"mysql+aiomysql://{self.tidb_user}:{self.tidb_password}"
            f"@{self.tidb_host}:{self.tidb_port}/{self.tidb_database}"
        )

    @property
    def sqlalchemy_url(self) -> str:
        return self.database_url or self.tidb_url

    # ── Redis (token denylist) ─────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379

    # ── Auth ───────────────────────────────────────────────────────────────
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    token_ttl_seconds: int = 3600        # 1h validity window
    bcrypt_rounds: int = 12

    # ── Feed consistency ───────────────────────────────────────────────────
    # Delete the comments attached to a post when the post is deleted.
    # Off by default: comments outlive their post unless this is enabled.
    delete_post_comments: bool = False
    reconcile_interval_seconds: int = 300

    # ── Observability ──────────────────────────────────────────────────────
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    tracing_enabled: bool = True
    service_name: str = "api-service"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
