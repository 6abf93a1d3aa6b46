"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # ==========================================================================
    # Feed Endpoints
    # ==========================================================================
    api_base_url: str = "https://mud-server-list.aliceric27.workers.dev"
    static_nodes_path: str = "/staticnodes"
    server_status_path: str = "/server-status"
    node_detail_path: str = "/server-status/{sid}"
    node_admin_url: str = "https://mudfish.net/admin/serverstatus/{sid}"

    # ==========================================================================
    # HTTP Settings
    # ==========================================================================
    http_timeout_seconds: float = 15.0
    http_max_attempts: int = 3
    max_concurrent_detail_fetches: int = 6  # Detail pages are fetched lazily, keep this low

    # ==========================================================================
    # Durable Storage
    # ==========================================================================
    storage_backend: str = "file"  # "file", "redis" or "memory"
    storage_path: str = "data/storage"
    redis_url: str = "redis://localhost:6379/0"
    snapshot_key: str = "fleetview_server_cache"
    preferences_key: str = "fleetview_user_filters"

    # Scheduler
    refresh_interval_minutes: int = 5

    # ==========================================================================
    # View Settings
    # ==========================================================================
    default_locale: str = "en"

    # Brand -> keyword patterns (case-insensitive regex), matched in table order
    brand_keywords: dict[str, list[str]] = {
        "Google": ["google"],
        "Amazon": ["amazon", "aws"],
        "Azure": ["azure", "microsoft"],
        "LightNode": ["lightnode"],
        "Linode": ["linode"],
        "DigitalOcean": ["digitalocean", r"\bdo\b"],
        "Vultr": ["vultr"],
    }

    # App Settings
    log_level: str = "INFO"
    log_dir: str = ""
    log_json: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
