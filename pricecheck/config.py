"""Configuration management using pydantic-settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Config(BaseSettings):
    """Application configuration loaded from environment variables"""

    # Canonical store
    data_path: str = "data/pricing.json"
    store_backend: str = "file"  # "file" or "supabase"
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    supabase_table: str = "pricing_documents"

    # Aggregator API
    aggregator_url: str = "https://www.llm-prices.com/current-v1.json"
    # Declared unit of the aggregator's prices ("per_million" or "per_1k")
    aggregator_unit: str = "per_million"
    aggregator_timeout_seconds: float = 15.0

    # LLM extraction
    extraction_api_key: Optional[str] = None
    extraction_base_url: Optional[str] = None
    extraction_model: str = "gpt-4-turbo"
    extraction_timeout_seconds: float = 60.0
    extraction_max_chars: int = 8000
    page_timeout_seconds: float = 30.0
    batch_delay_seconds: float = 2.0

    # HTTP settings
    user_agent: str = "LLM-PriceCheck/1.0"

    # Publish policy
    auto_publish_confidence: float = 0.85

    # Change detection
    price_change_threshold_percent: float = 10.0
    ratio_divergence_percent: float = 50.0

    # Merge policy (drop models missing from a source's latest payload)
    prune_missing_models: bool = False

    # Concurrency
    max_parallel_sources: int = 3

    # Alerting (notification collaborator only)
    alert_email: Optional[str] = None
    resend_api_key: Optional[str] = None
    alert_sender: str = "LLM PriceCheck <noreply@llmpricecheck.com>"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )


def load_config() -> Config:
    """Load and validate configuration"""
    return Config()
