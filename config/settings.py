from enum import StrEnum

from pydantic_settings import BaseSettings


class LLMProvider(StrEnum):
    OLLAMA = "ollama"
    CLAUDE = "claude"
    GEMINI = "gemini"
    OPENAI = "openai"


class Settings(BaseSettings):
    # LLM routing
    default_provider: LLMProvider = LLMProvider.OLLAMA
    caption_provider: LLMProvider = LLMProvider.OPENAI  # vision model used for captions

    # Ollama
    ollama_base_url: str = "http://ollama:11434"
    ollama_vision_model: str = "qwen2.5-vl:7b"

    # Cloud providers (optional)
    claude_api_key: str = ""
    claude_model: str = "claude-sonnet-4-5-20250929"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"

    # Database
    database_url: str = "sqlite+aiosqlite:///data/memora.db"

    # Media library scanned for new photos
    media_root: str = "data/photos"
    scan_batch_size: int = 50  # new images per scan pass
    scan_page_size: int = 20  # assets per media library page

    # Captioning
    caption_item_delay_seconds: float = 1.0  # pause between queued items (rate limits)
    caption_max_attempts: int = 3  # provider calls per item, including the first
    caption_retry_backoff_seconds: float = 2.0
    caption_timeout_seconds: float = 60.0

    # Background work
    background_enabled: bool = True
    background_interval_seconds: int = 15 * 60
    background_min_interval_seconds: int = 15
    background_max_items: int = 1  # background windows are short-lived
    unmetered_interface_prefixes: str = "wl,wi-fi,wifi,en,eth,ethernet"

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
