"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings


class DocflowConfig(BaseSettings):
    """Document workflow service configuration"""

    # Database configuration
    database_url: str = "sqlite:///docflow.db"  # "memory://" for in-memory storage

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    auth_enabled: bool = True  # When False the caller is taken from X-User-Id

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Workflow rules
    rejection_min_length: int = 10
    cancellation_min_length: int = 10
    max_comment_length: int = 1000
    max_reason_length: int = 500

    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100

    # Notification delivery
    webhook_url: str = ""  # Empty = disabled
    webhook_timeout: float = 5.0

    # Feature flags
    enable_audit_logging: bool = True
    enable_notifications: bool = True

    class Config:
        env_prefix = "DOCFLOW_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = DocflowConfig()


def get_config() -> DocflowConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> DocflowConfig:
    """Reload configuration from environment"""
    global config
    config = DocflowConfig()
    return config
