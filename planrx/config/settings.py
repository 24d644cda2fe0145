from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "PlanrX"
    debug: bool = True
    database_url: str = Field("sqlite:///./planrx.db", validation_alias="DATABASE_URL")
    redis_url: str = Field("redis://localhost:6379/0", validation_alias="REDIS_URL")
    cache_ttl_seconds: int = 3600
    critical_path_time_limit_seconds: Optional[float] = 10.0
    critical_path_batch_size: int = 256


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
