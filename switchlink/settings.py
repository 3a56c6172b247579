import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from switchlink.services.errors import ConfigurationError

VALID_LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR")


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Account credentials
    leviton_email: str = Field(default="", alias="LEVITON_EMAIL")
    leviton_password: str = Field(default="", alias="LEVITON_PASSWORD")

    # API Configuration
    api_base_url: str = Field(
        default="https://my.leviton.com/api", alias="LEVITON_API_BASE_URL"
    )
    request_timeout: float = Field(default=10.0, alias="REQUEST_TIMEOUT")
    use_cache: bool = Field(default=True, alias="USE_CACHE")

    # Response cache
    cache_ttl: float = Field(default=2.0, alias="CACHE_TTL")
    cache_max_size: int = Field(default=1000, alias="CACHE_MAX_SIZE")
    cache_update_on_access: bool = Field(default=False, alias="CACHE_UPDATE_ON_ACCESS")

    # Circuit breaker
    breaker_failure_threshold: int = Field(default=5, alias="BREAKER_FAILURE_THRESHOLD")
    breaker_reset_timeout: float = Field(default=30.0, alias="BREAKER_RESET_TIMEOUT")
    breaker_half_open_max: int = Field(default=3, alias="BREAKER_HALF_OPEN_MAX")
    breaker_failure_window: float = Field(default=60.0, alias="BREAKER_FAILURE_WINDOW")

    # Rate limiter (write operations)
    rate_limit_max_requests: int = Field(default=300, alias="RATE_LIMIT_MAX_REQUESTS")
    rate_limit_window: float = Field(default=60.0, alias="RATE_LIMIT_WINDOW")
    rate_limit_wait: bool = Field(default=False, alias="RATE_LIMIT_WAIT")
    rate_limit_max_wait: float = Field(default=30.0, alias="RATE_LIMIT_MAX_WAIT")

    # Request queue
    queue_max_concurrent: int = Field(default=5, alias="QUEUE_MAX_CONCURRENT")
    queue_max_size: int = Field(default=100, alias="QUEUE_MAX_SIZE")
    queue_request_timeout: float = Field(default=30.0, alias="QUEUE_REQUEST_TIMEOUT")

    # Retry
    retry_max_attempts: int = Field(default=3, alias="RETRY_MAX_ATTEMPTS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    debug: bool = Field(default=False, alias="DEBUG")

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from the process environment (and .env, if present)."""
        load_dotenv()
        return cls.model_validate(dict(os.environ))


def validate_settings(settings: Settings) -> Settings:
    """
    Check value ranges that pydantic's type coercion does not cover.

    Raises:
        ConfigurationError: Listing every problem found
    """
    errors: list[str] = []

    positive_ints = {
        "cache_max_size": settings.cache_max_size,
        "breaker_failure_threshold": settings.breaker_failure_threshold,
        "breaker_half_open_max": settings.breaker_half_open_max,
        "rate_limit_max_requests": settings.rate_limit_max_requests,
        "queue_max_concurrent": settings.queue_max_concurrent,
        "queue_max_size": settings.queue_max_size,
        "retry_max_attempts": settings.retry_max_attempts,
    }
    for name, value in positive_ints.items():
        if value < 1:
            errors.append(f"{name} must be at least 1")

    positive_durations = {
        "cache_ttl": settings.cache_ttl,
        "breaker_reset_timeout": settings.breaker_reset_timeout,
        "breaker_failure_window": settings.breaker_failure_window,
        "rate_limit_window": settings.rate_limit_window,
        "queue_request_timeout": settings.queue_request_timeout,
    }
    for name, value in positive_durations.items():
        if value <= 0:
            errors.append(f"{name} must be greater than 0")

    if settings.rate_limit_max_wait < 0:
        errors.append("rate_limit_max_wait cannot be negative")

    if not 5 <= settings.request_timeout <= 60:
        errors.append("request_timeout must be between 5 and 60 seconds")

    if settings.log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}")

    if not settings.api_base_url.startswith(("http://", "https://")):
        errors.append("api_base_url must be an http(s) URL")

    if errors:
        raise ConfigurationError(
            f"Configuration validation failed: {'; '.join(errors)}",
            field=errors[0].split(" ", 1)[0],
            details=errors,
        )

    return settings
