from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Server
    host: str = "127.0.0.1"
    port: int = 8001

    database_url: str = "sqlite:///./pricewatch.db"

    # Marketplace (Browse API)
    marketplace_sandbox: bool = False
    marketplace_id: str = "EBAY_US"
    marketplace_request_timeout: float = 10.0

    # OAuth (identity provider)
    oauth_client_id: str = ""
    oauth_client_secret: str = ""
    oauth_redirect_uri: str = ""
    token_refresh_buffer_seconds: int = 300  # treat tokens expiring within 5 min as expired

    # Retry / backoff
    retry_max_retries: int = 5
    retry_initial_delay: float = 0.1       # seconds
    retry_backoff_base: float = 2.0
    retry_max_delay: float = 30.0          # seconds
    retry_statuses: list[int] = [429, 500, 502, 503, 504]

    # Currency
    base_currency: str = "USD"
    exchange_rate_api_key: str = ""
    exchange_rate_ttl: int = 300           # seconds
    exchange_rate_timeout: float = 5.0

    # Search worker
    worker_concurrency: int = 3
    worker_batch_delay: float = 0.5        # seconds between query groups
    worker_max_queries_per_run: int = 50
    search_page_size: int = 100
    search_max_pages: int = 1
    unit_timeout: float = 120.0            # per query / per item deadline (seconds)
    default_target_discount_pct: float = 0.0  # target price = discovery price minus this %

    # Price monitor
    monitor_prices_each_cycle: bool = True
    monitor_batch_size: int = 5
    monitor_batch_delay: float = 0.5
    monitor_max_items_per_cycle: int = 500

    # Scheduler
    scheduler_enabled: bool = True
    cycle_interval: int = 300              # seconds (every 5 minutes)
    min_cycle_interval: int = 30

    # Notifications
    notify_default_threshold_pct: float = 5.0
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from: str = ""

    # Data retention
    price_sample_retention_days: int = 90
    notification_log_retention_days: int = 30

    @property
    def oauth_enabled(self) -> bool:
        return bool(self.oauth_client_id and self.oauth_client_secret)

    @property
    def exchange_rates_enabled(self) -> bool:
        return bool(self.exchange_rate_api_key)

    @property
    def smtp_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_from)

    @property
    def marketplace_api_base(self) -> str:
        if self.marketplace_sandbox:
            return "https://api.sandbox.ebay.com/buy/browse/v1"
        return "https://api.ebay.com/buy/browse/v1"

    @property
    def oauth_token_url(self) -> str:
        if self.marketplace_sandbox:
            return "https://api.sandbox.ebay.com/identity/v1/oauth2/token"
        return "https://api.ebay.com/identity/v1/oauth2/token"

    # Auth
    api_key: str = ""  # Set to enable API key auth; empty = no auth

    # Log
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
