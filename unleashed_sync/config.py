import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    # Unleashed API settings
    unleashed_api_url: str = os.getenv("UNLEASHED_API_URL", "https://api.unleashedsoftware.com")
    unleashed_page_size: int = int(os.getenv("UNLEASHED_PAGE_SIZE", "200"))
    unleashed_client_type: str = os.getenv("UNLEASHED_CLIENT_TYPE", "unleashed-sync")

    # Shopify Admin API settings
    shopify_api_version: str = os.getenv("SHOPIFY_API_VERSION", "2025-04")

    # Shared HTTP client settings
    http_timeout_seconds: int = int(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))
    http_max_retries: int = int(os.getenv("HTTP_MAX_RETRIES", "3"))
    http_retry_delay: float = float(os.getenv("HTTP_RETRY_DELAY", "1.0"))

    # Redis / Celery
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    celery_result_backend: str = os.getenv(
        "CELERY_RESULT_BACKEND", os.getenv("REDIS_URL", "redis://localhost:6379/0")
    )
    credentials_key_prefix: str = os.getenv("CREDENTIALS_KEY_PREFIX", "unleashed_sync:auth:")

    # Mutation batching
    mutation_batch_size: int = int(os.getenv("MUTATION_BATCH_SIZE", "10"))
    mutation_batch_delay: float = float(os.getenv("MUTATION_BATCH_DELAY", "0.1"))
    product_batch_delay: float = float(os.getenv("PRODUCT_BATCH_DELAY", "1.0"))
    mutation_strategy: str = os.getenv("MUTATION_STRATEGY", "direct")  # direct, queue, bulk, auto
    queue_threshold: int = int(os.getenv("QUEUE_THRESHOLD", "5"))
    bulk_threshold: int = int(os.getenv("BULK_THRESHOLD", "250"))

    # Bulk operations
    bulk_poll_interval: float = float(os.getenv("BULK_POLL_INTERVAL", "2.0"))
    bulk_timeout_seconds: float = float(os.getenv("BULK_TIMEOUT_SECONDS", "300"))

    # Product mapping
    price_tier_currency: str = os.getenv("PRICE_TIER_CURRENCY", "AUD")
    default_product_type: str = os.getenv("DEFAULT_PRODUCT_TYPE", "General")
    default_vendor: str = os.getenv("DEFAULT_VENDOR", "Unleashed")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = os.getenv("LOG_JSON", "").lower() in {"1", "true", "yes", "on"}


settings = Settings()
