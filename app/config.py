"""
Configuration and environment variables for the Maintenance Request Orchestrator.
"""
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Service Configuration
    app_name: str = "Maintenance Request Orchestrator"
    service_name: str = "maintenance-orchestrator"
    version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False

    # API Configuration
    enable_cors: bool = True
    cors_origins: List[str] = ["*"]

    # Host and Port
    host: str = "0.0.0.0"
    port: int = 8000

    # Logging
    log_level: str = "INFO"

    # OpenAI Configuration
    openai_api_key: str = "dev-openai-key"
    openai_model: str = "gpt-4o"
    openai_temperature: float = 0.7
    openai_max_tokens: int = 500
    openai_timeout: int = 30  # transport timeout, inherited by triage turns

    # Contractor Matching
    matching_timeout_seconds: float = 12.0
    matching_max_results: int = 3

    # Triage Sessions
    session_idle_ttl_minutes: int = 240
    session_sweep_interval_seconds: int = 300

    # Approval Tokens
    approval_secret_key: str = "dev-secret-key"
    public_base_url: str = "http://localhost:8000"
    approval_default_ttl_hours: int = 24
    approval_min_ttl_hours: int = 1
    approval_max_ttl_hours: int = 72

    # Delivery Gateway (Brevo transactional API)
    brevo_api_key: Optional[str] = None
    brevo_base_url: str = "https://api.brevo.com/v3"
    brevo_timeout: int = 15
    sender_email: str = "maintenance@example-housing.org"
    sender_name: str = "Property Maintenance"
    sms_sender: str = "Maintenance"
    sms_max_length: int = 160

    # Circuit Breaker Configuration
    delivery_failure_threshold: int = 5
    circuit_breaker_timeout: int = 60

    # Case / Appointment Store
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    @field_validator("openai_temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0.0 <= v <= 2.0:
            raise ValueError("OpenAI temperature must be between 0.0 and 2.0")
        return v

    @field_validator("sms_max_length")
    @classmethod
    def validate_sms_length(cls, v: int) -> int:
        if not 40 <= v <= 160:
            raise ValueError("SMS max length must be between 40 and 160")
        return v

    @property
    def delivery_configured(self) -> bool:
        return bool(self.brevo_api_key)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }


# Global settings instance
settings = Settings()
