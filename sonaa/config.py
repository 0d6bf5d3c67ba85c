from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SONAA_", env_file=".env", extra="ignore")

    # runtime env
    env: str = "dev"

    # feed conversion endpoint (rss2json)
    feed_api_url: str = "https://api.rss2json.com/v1/api.json"
    feed_api_key: Optional[str] = None
    http_timeout: float = 15.0
    user_agent: str = "Mozilla/5.0 (compatible; SonaaBot/1.0; +https://example.com/bot)"

    # aggregation pacing / caps
    batch_size: int = 4                # sources fetched concurrently
    batch_pause_seconds: float = 0.25  # between source batches
    standard_cap: int = 5
    video_cap: int = 2
    snippet_chars: int = 150
    video_snippet_chars: int = 100
    repeat_threshold: int = 2          # images seen in more items than this are template assets
    final_ordering: Literal["newest", "shuffle"] = "newest"

    # og:image backfill
    backfill_max: int = 24
    backfill_batch_size: int = 3
    backfill_pause_seconds: float = 0.3
    page_timeout: float = 8.0
    page_min_length: int = 500
    page_endpoints: List[str] = [
        "{raw_url}",
        "https://api.allorigins.win/raw?url={url}",
        "https://corsproxy.io/?url={url}",
    ]
    og_cache_size: Optional[int] = None  # None = unbounded for the process lifetime

    # configuration input
    sources_file: Optional[str] = None  # None = bundled default_sources.yml

    # api
    cors_origins: str = "*"

    # observability
    extract_debug: bool = False


settings = Settings()
