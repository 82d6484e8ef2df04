"""Bot configuration using pydantic-settings.

This module defines the BotSettings class that reads configuration from
environment variables. Required fields must be set for the server to start;
invalid values fail fast with a pydantic ValidationError.

The concurrency limit, retry attempt counts and delays, and the idempotency
retention window are all configurable here rather than hard-coded in the
pipeline.
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BotSettings(BaseSettings):
    """Mention bot configuration from environment variables.

    Variables are read without a prefix (e.g., GITHUB_APP_ID,
    MAX_CONCURRENT_REQUESTS).

    Required fields:
    - github_app_id: GitHub App identifier
    - github_app_private_key: PEM private key of the GitHub App
    - github_webhook_secret: Secret for validating webhook signatures
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # GitHub App
    # -------------------------------------------------------------------------
    github_app_id: str
    github_app_private_key: str
    github_webhook_secret: str
    github_api_url: str = "https://api.github.com"

    # -------------------------------------------------------------------------
    # Agent provider
    # -------------------------------------------------------------------------
    claude_provider: Literal["anthropic", "bedrock"] = "anthropic"
    anthropic_api_key: Optional[str] = None
    claude_model: Optional[str] = None
    aws_region: Optional[str] = None

    # Agent CLI executable (absolute path or a name on PATH)
    claude_code_path: str = "claude"

    # Wall-clock bound for a single agent execution
    agent_timeout_seconds: float = 600.0
    agent_max_turns: int = 50

    # Enables the Context7 documentation tool server when set
    context7_api_key: Optional[str] = None

    # -------------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------------
    clone_base_dir: str = "/tmp/bot-workspaces"
    clone_depth: int = 50

    # -------------------------------------------------------------------------
    # Request pipeline
    # -------------------------------------------------------------------------
    trigger_phrase: str = "@mention-bot"
    max_concurrent_requests: int = 3
    idempotency_ttl_seconds: float = 3600.0

    retry_max_attempts: int = 3
    retry_initial_delay_seconds: float = 1.0
    fetch_retry_initial_delay_seconds: float = 2.0
    retry_max_delay_seconds: float = 20.0
    retry_backoff_factor: float = 2.0

    # -------------------------------------------------------------------------
    # Server
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    log_format: Literal["json", "console"] = "json"

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_app_id", "github_webhook_secret", "trigger_phrase")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate that required strings are not blank."""
        if not v or not v.strip():
            raise ValueError("value cannot be empty")
        return v.strip()

    @field_validator("github_app_private_key")
    @classmethod
    def validate_private_key(cls, v: str) -> str:
        """Validate the private key and expand escaped newlines.

        Container environments often store the PEM on a single line with
        literal "\\n" sequences.
        """
        if not v or not v.strip():
            raise ValueError("github_app_private_key cannot be empty")
        return v.replace("\\n", "\n")

    @field_validator("github_api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        """Validate that the API URL is an http(s) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("github_api_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("clone_base_dir")
    @classmethod
    def validate_clone_base_dir(cls, v: str) -> str:
        """Validate that the clone base directory is an absolute path."""
        if not Path(v).is_absolute():
            raise ValueError("clone_base_dir must be an absolute path")
        return v

    @field_validator(
        "clone_depth",
        "max_concurrent_requests",
        "retry_max_attempts",
        "agent_max_turns",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate that counts are at least one."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("agent_timeout_seconds", "idempotency_ttl_seconds")
    @classmethod
    def validate_positive_duration(cls, v: float) -> float:
        """Validate that durations are strictly positive."""
        if v <= 0:
            raise ValueError("value must be greater than 0")
        return v

    @field_validator(
        "retry_initial_delay_seconds",
        "fetch_retry_initial_delay_seconds",
        "retry_max_delay_seconds",
    )
    @classmethod
    def validate_delay(cls, v: float) -> float:
        """Validate that retry delays are not negative."""
        if v < 0:
            raise ValueError("retry delays cannot be negative")
        return v

    @field_validator("retry_backoff_factor")
    @classmethod
    def validate_backoff_factor(cls, v: float) -> float:
        """Validate that the backoff factor never shrinks the delay."""
        if v < 1:
            raise ValueError("retry_backoff_factor must be at least 1")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @model_validator(mode="after")
    def validate_provider(self) -> "BotSettings":
        """Validate provider-specific requirements.

        The anthropic provider needs an API key. Bedrock needs a region and
        an explicit model id, since Bedrock model ids use a different format.
        Bedrock credentials are resolved by the AWS credential chain inside
        the agent subprocess and are not validated here.
        """
        if self.claude_provider == "anthropic":
            if not self.anthropic_api_key:
                raise ValueError(
                    "ANTHROPIC_API_KEY is required when CLAUDE_PROVIDER=anthropic"
                )
        else:
            if not self.aws_region:
                raise ValueError("AWS_REGION is required when CLAUDE_PROVIDER=bedrock")
            if not self.claude_model:
                raise ValueError(
                    "CLAUDE_MODEL is required when CLAUDE_PROVIDER=bedrock"
                )
        return self

    @property
    def context7_enabled(self) -> bool:
        """Whether the Context7 tool server is configured."""
        return bool(self.context7_api_key)


def get_settings() -> BotSettings:
    """Create and return a BotSettings instance.

    Returns:
        BotSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return BotSettings()
