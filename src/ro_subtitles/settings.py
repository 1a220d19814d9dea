from typing import Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 7000
    api_base: str = "https://subs.ro/api/v1.0"
    api_key_header: str = "X-Subs-Api-Key"
    # Delivery base URL; derived from the incoming request when unset
    public_base_url: Optional[str] = None
    request_timeout: float = 15.0

    # Response cache: empty results are retried sooner than non-empty ones
    response_cache_ttl: float = 15 * 60
    empty_cache_ttl: float = 60
    response_cache_size: int = 1000
    client_cache_size: int = 500

    # Archives serve many resolutions, keep them longer than ranked results
    archive_cache_ttl: float = 60 * 60
    archive_cache_size: int = 300
    page_metadata_ttl: float = 24 * 60 * 60
    page_metadata_cache_size: int = 2000

    top_n: int = 5
    fuzzy_cap: int = 15
    match_policy: Literal["archive", "record"] = "archive"

    download_concurrency: int = 2
    download_min_interval: float = 0.25
    download_retries: int = 2

    debug_matching: bool = False
    log_level: str = "INFO"
    json_logs: bool = False
    log_file: Optional[str] = None

    class Config:
        env_prefix = "SUBSRO_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("fuzzy_cap")
    @classmethod
    def _bound_fuzzy_cap(cls, value: int) -> int:
        if not 0 <= value <= 15:
            raise ValueError("fuzzy_cap must be between 0 and 15")
        return value

    @model_validator(mode="after")
    def _empty_ttl_shorter(self) -> "Settings":
        if self.empty_cache_ttl >= self.response_cache_ttl:
            raise ValueError("empty_cache_ttl must be shorter than response_cache_ttl")
        return self


settings = Settings()
