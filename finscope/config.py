from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    openrouter_api_key: str = ""
    llm_base_url: str = "https://openrouter.ai/api/v1"
    llm_model: str = "openai/gpt-4o-mini"
    telegram_bot_token: str = ""
    db_path: str = "finscope_ledger.json"
    timezone: str = "America/Sao_Paulo"

    max_input_length: int = 500
    llm_timeout_seconds: float = 15.0
    save_timeout_seconds: float = 5.0
    session_timeout_minutes: int = 30
    history_limit: int = 20


@lru_cache
def get_settings() -> Settings:
    return Settings()
