from __future__ import annotations
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="WAGW_", env_file=".env", extra="ignore")

    # Vendor (Evolution API)
    evolution_api_url: str = Field(default="http://127.0.0.1:8080")
    evolution_api_key: str = Field(default="", description="Sent as the 'apikey' header on every vendor call.")
    public_webhook_url: str = Field(default="", description="Public base URL the vendor posts webhooks to.")

    # Network
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8787)
    webhook_path: str = Field(default="/webhook/whatsapp")
    metrics_path: str = Field(default="/metrics")
    health_path: str = Field(default="/healthz")
    access_log: bool = Field(default=False, description="uvicorn access log; off because every vendor webhook is one request.")

    # Security
    require_client_auth: bool = Field(default=True)
    client_api_keys: list[str] = Field(default_factory=list, description="Static API keys for instance management clients.")

    # Provider defaults (merged into ProviderConfig)
    provider_priority: int = Field(default=1)
    provider_retry_attempts: int = Field(default=3)
    provider_timeout_s: float = Field(default=30.0)
    rate_limit_messages_per_minute: int = Field(default=60)
    rate_limit_burst: int = Field(default=10)

    # Manager
    primary_provider: str = Field(default="evolution")
    health_check_interval_s: float = Field(default=30.0)

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True)

    def webhook_url_for(self, instance_id: str) -> str:
        base = self.public_webhook_url.rstrip("/")
        return f"{base}{self.webhook_path}/{instance_id}"

def load_settings() -> Settings:
    return Settings()
