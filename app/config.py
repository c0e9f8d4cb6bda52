"""Application configuration management."""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    These settings are automatically loaded from the .env file or environment variables.
    All sensitive data (API keys) should be stored in environment variables, not hardcoded.

    Attributes:
        gemini_api_key: Shared Gemini key used for generations paid with credits
        ohmygpt_api_key: Server-side key the relay uses for the upstream image API
        ohmygpt_base_url: Upstream image generation endpoint behind the relay
        relay_url: URL the proxy backend posts to
        default_provider: Provider selected when the UI opens
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        max_retries: Total attempts per provider call, including the first
        retry_base_delay_ms: Delay before the first retry
        pacing_delay_ms: Pause between successive dispatches in a batch
        timeout: Request timeout in seconds
        initial_credits: Credits granted to the local demo user
        admin_username: Login of the administrator account
        admin_password: Administrator password; setting it turns on login
        admin_credits: Balance of the administrator account
        run_integration_tests: Whether to run integration tests
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    # API Keys
    gemini_api_key: str = ""
    ohmygpt_api_key: Optional[str] = None

    # Relay
    ohmygpt_base_url: str = "https://apic1.ohmycdn.com/v1/images/generations"
    relay_url: str = "http://localhost:7860/api/generate-image"

    # Application Settings
    default_provider: str = "gemini-2.5-flash-image"
    log_level: str = "INFO"
    max_retries: int = 6
    retry_base_delay_ms: int = 2000
    pacing_delay_ms: int = 2500
    timeout: int = 120

    # Accounts
    default_username: str = "demo"
    initial_credits: int = 20
    admin_username: str = "admin"
    admin_password: Optional[str] = None
    admin_credits: int = 999999

    # Server
    server_name: str = "0.0.0.0"
    server_port: int = 7860

    # Testing
    run_integration_tests: bool = False

    @property
    def auth_enabled(self) -> bool:
        """Login is required once an administrator password is configured."""
        return bool(self.admin_password)

    def validate_required_keys(self) -> None:
        """Validate that required API keys are present.

        Raises:
            ValueError: If required API keys are missing
        """
        # Relay-backed providers use the server-side key instead
        if self.default_provider in ("dall-e", "flux-1.1-pro"):
            if not self.ohmygpt_api_key:
                raise ValueError(
                    "OHMYGPT_API_KEY is required when the default provider is served "
                    "through the relay. Please set it in your .env file or environment variables."
                )
            return

        if not self.gemini_api_key:
            raise ValueError(
                "GEMINI_API_KEY is required for Gemini and Imagen generation. "
                "Please set it in your .env file or environment variables. "
                "Get your key from: https://aistudio.google.com/apikey"
            )


# Global settings instance
settings = Settings()
