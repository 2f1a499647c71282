from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SIDELLAMA_", extra="ignore")

    ollama_url: str = "http://localhost:11434"
    request_timeout_sec: float = 60.0
    max_tool_hops: int = 5
    settings_path: str = ""
    preload_on_startup: bool = True
    serper_url: str = "https://google.serper.dev/search"
    log_level: str = "INFO"


@lru_cache
def get_config() -> ServiceConfig:
    return ServiceConfig()
