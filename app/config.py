from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"

MILLISECONDS_PER_DAY = 86_400_000


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Ticket settings
    ENCRYPTION_KEY: str | None = None
    TICKET_VALIDITY_DAYS: int = 5
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # CAPTCHA settings (gate is active only when both keys are set)
    CAPTCHA_SITE_KEY: str | None = None
    CAPTCHA_SECRET_KEY: str | None = None
    CAPTCHA_VERIFY_URL: str = "https://hcaptcha.com/siteverify"
    CAPTCHA_SCRIPT_URL: str = "https://js.hcaptcha.com/1/api.js"
    CAPTCHA_TIMEOUT_SECONDS: float = 10.0

    # Outbound mail settings
    SMTP_ENABLED: bool = False
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_STARTTLS: bool = False
    SMTP_TIMEOUT_SECONDS: float = 30.0
    MAIL_FROM: str = "postmaster@localhost"

    # Remote SMTP reachability probe
    SMTP_PROBE_PORT: int = 25
    SMTP_PROBE_TIMEOUT_SECONDS: float = 10.0

    # =================================================================
    # BACKGROUND ACTION SETTINGS
    # =================================================================
    ACTION_POOL_SIZE: int = 16
    ACTION_TIMEOUT_SECONDS: float = 60.0
    ACTION_INLINE_WAIT_SECONDS: float = 2.0
    ACTION_RESULT_TTL_SECONDS: int = 3600
    POLL_INTERVAL_SECONDS: int = 5
    TEMPORARY_WHITE_DAYS: int = 7

    # Redis settings
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_KEY_PREFIX: str = "mailaction"
    REDIS_MAX_CONNECTIONS: int = 20

    # Proxy settings
    TRUST_X_FORWARDED_FOR: bool = False
    TRUSTED_PROXY_IPS: list[str] = []

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def captcha_enabled(self) -> bool:
        return bool(self.CAPTCHA_SITE_KEY and self.CAPTCHA_SECRET_KEY)

    def ticket_validity_ms(self) -> int:
        return self.TICKET_VALIDITY_DAYS * MILLISECONDS_PER_DAY

    def get_action_pool_config(self) -> dict:
        """
        Get background action pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "max_concurrency": self.ACTION_POOL_SIZE,
            "timeout_seconds": self.ACTION_TIMEOUT_SECONDS,
            "result_ttl_seconds": self.ACTION_RESULT_TTL_SECONDS,
        }

        if self.environment == "development":
            # Smaller pool for local development
            config.update({"max_concurrency": min(self.ACTION_POOL_SIZE, 4)})

        return config


settings = Settings()
