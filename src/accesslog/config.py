import os
from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

CONFIG_PATH_ENV = "APP_CONFIG"


class AppSection(BaseModel):
    name: str = "accesslog-tracker"
    env: str = "local"
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)
    debug: bool = False


class DatabaseSection(BaseModel):
    host: str = "postgres"
    port: int = Field(default=5432, ge=1, le=65535)
    name: str = "accesslog"
    user: str = "accesslog"
    password: str = "accesslog"
    ssl_mode: str = "disable"
    max_open_conns: int = Field(default=25, ge=1)
    max_idle_conns: int = Field(default=5, ge=0)
    conn_max_lifetime: int = Field(default=300, ge=1)  # seconds
    echo: bool = False
    url: str | None = None

    @property
    def dsn(self) -> str:
        if self.url:
            return self.url
        # asyncpg DSN
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.name}"
        )

    @property
    def sync_dsn(self) -> str:
        """Blocking-driver form of dsn, for migrations."""
        dsn = self.dsn.replace("postgresql+asyncpg://", "postgresql+psycopg://", 1)
        dsn = dsn.replace("sqlite+aiosqlite://", "sqlite://", 1)
        if not self.url and self.ssl_mode != "disable":
            dsn += f"?sslmode={self.ssl_mode}"
        return dsn


class RedisSection(BaseModel):
    host: str = "redis"
    port: int = Field(default=6379, ge=1, le=65535)
    password: str = ""
    db: int = 0
    pool_size: int = Field(default=10, ge=1)
    url: str | None = None

    @property
    def dsn(self) -> str:
        if self.url:
            return self.url
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class CorsSection(BaseModel):
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:8080"]
    allowed_methods: list[str] = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    allowed_headers: list[str] = [
        "Origin",
        "Content-Type",
        "Accept",
        "X-Requested-With",
        "X-API-Key",
        "If-None-Match",
    ]
    allow_credentials: bool = False
    max_age: int = 86400
    # subdomains of this domain (and the domain itself) are allowed too
    parent_domain: str | None = None


class RateLimitSection(BaseModel):
    enabled: bool = True
    requests_per_minute: int = Field(default=2000, ge=1)
    requests_per_hour: int = Field(default=20000, ge=1)
    burst_size: int = Field(default=200, ge=1)


class LoggingSection(BaseModel):
    level: str = "INFO"
    format: str = "json"  # json | text
    output: str = "stdout"  # stdout | stderr | <file path>


class TimeoutSection(BaseModel):
    default: float = 30.0
    tracking: float = 5.0
    long_running: float = 120.0
    database: float = 10.0
    external: float = 15.0


class CacheSection(BaseModel):
    application_ttl: int = 300
    statistics_ttl: int = 30


class BeaconSection(BaseModel):
    endpoint: str = "/v1/tracking/track"
    version: str = "1.0.0"
    max_age: int = 86400


class WorkerSection(BaseModel):
    retention_days: int = Field(default=90, ge=0)  # 0 disables cleanup
    cleanup_interval: int = Field(default=3600, ge=1)  # seconds


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_nested_delimiter="__", extra="ignore")

    app: AppSection = AppSection()
    database: DatabaseSection = DatabaseSection()
    redis: RedisSection = RedisSection()
    cors: CorsSection = CorsSection()
    rate_limit: RateLimitSection = RateLimitSection()
    logging: LoggingSection = LoggingSection()
    timeouts: TimeoutSection = TimeoutSection()
    cache: CacheSection = CacheSection()
    beacon: BeaconSection = BeaconSection()
    worker: WorkerSection = WorkerSection()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources = [init_settings, env_settings, dotenv_settings]
        config_path = os.getenv(CONFIG_PATH_ENV)
        if config_path:
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=config_path))
        return tuple(sources)


def load_settings() -> Settings:
    """
    Build settings from APP_CONFIG (YAML) with environment overrides.

    Unlike a bare Settings(), a configured but missing YAML file is an error.
    """
    config_path = os.getenv(CONFIG_PATH_ENV)
    if config_path and not os.path.isfile(config_path):
        raise FileNotFoundError(f"config file not found: {config_path}")
    return Settings()


@lru_cache
def get_settings() -> Settings:
    return load_settings()
