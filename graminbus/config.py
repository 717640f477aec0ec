"""Configuration management using Pydantic Settings"""

from typing import Optional
from urllib.parse import quote_plus
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )
    
    # Storage Configuration
    storage_backend: str = "redis"  # redis or memory
    storage_key_prefix: str = "graminbus"
    
    # Redis Configuration
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0
    
    # Sync Simulation
    sync_delay_seconds: float = 1.5  # Simulated remote delivery latency
    online_sync_window_seconds: float = 0.8  # Syncing indicator after an online write
    
    # Connectivity Probe
    reachability_url: Optional[str] = None  # No URL means no platform signal
    reachability_interval_seconds: int = 15
    reachability_timeout_seconds: float = 5.0
    
    # Prediction (Gemini)
    gemini_api_key: str = ""
    gemini_model: str = "gemini-3-flash-preview"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    prediction_timeout_seconds: float = 15.0
    prediction_cache_ttl_seconds: int = 300  # 5 minutes
    
    # Application
    app_name: str = "GraminBus Shahpura"
    default_language: str = "en"
    local_timezone: str = "Asia/Kolkata"
    log_level: str = "INFO"
    
    @property
    def redis_url(self) -> str:
        """Construct Redis URL from components"""
        if self.redis_password:
            encoded_password = quote_plus(self.redis_password)
            return f"redis://:{encoded_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"
    
    @property
    def roster_key(self) -> str:
        return f"{self.storage_key_prefix}_data"
    
    @property
    def queue_key(self) -> str:
        return f"{self.storage_key_prefix}_offline_queue"
    
    @property
    def language_key(self) -> str:
        return f"{self.storage_key_prefix}_lang"
    
    @property
    def prediction_cache_key(self) -> str:
        return f"{self.storage_key_prefix}_predictions"


# Global settings instance
settings = Settings()
