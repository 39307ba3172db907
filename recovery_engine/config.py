"""
Application configuration management.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Recovery engine settings loaded from environment variables."""

    # Redis (durable offline flag)
    redis_url: str = "redis://localhost:6379/0"
    offline_flag_key: str = "recovery:offline_mode"

    # Admin API
    api_key: Optional[str] = None  # Adapter endpoints are open when not set

    # Application
    log_level: str = "INFO"
    enable_offline_support: bool = True
    enable_auto_escalation: bool = True
    message_catalog_path: Optional[str] = None  # Falls back to packaged catalog

    # Retry scheduling (seconds)
    retry_base_delay: float = 1.0
    retry_max_delay_network: float = 30.0
    retry_max_delay: float = 10.0
    retry_jitter_fraction: float = 0.3
    max_retries: int = 3

    # Connectivity monitoring
    connectivity_debounce_seconds: float = 0.25
    slow_rtt_ms: float = 1000.0
    slow_downlink_mbps: float = 0.5
    unstable_flap_threshold: int = 3
    unstable_window_seconds: float = 30.0

    # Aggregate health / frustration policy
    health_window_size: int = 20
    frustration_window_seconds: float = 300.0
    frustration_unresolved_points: int = 15
    frustration_unresolved_cap: int = 60
    frustration_critical_points: int = 25
    frustration_count_points: int = 5
    frustration_count_cap: int = 50
    frustration_escalation_threshold: int = 70
    clear_decay_points: int = 20

    # Support escalation
    support_timezone: str = "America/Argentina/Buenos_Aires"
    support_business_days: List[int] = [0, 1, 2, 3, 4]  # Monday..Friday
    support_hours_start: int = 9
    support_hours_end: int = 18
    support_whatsapp: str = "+5492965000000"
    support_phone: str = "+5492965000000"
    support_email: str = "soporte@marketplace.example"
    support_chat_url: str = "https://chat.marketplace.example"

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
