import math
import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Remote API
    api_url: str = Field(default="http://localhost:8080", alias="API_URL")
    api_key: str | None = Field(default=None, alias="API_KEY")
    request_timeout: float = Field(default=30.0, alias="REQUEST_TIMEOUT")
    max_retries: int = Field(default=3, alias="MAX_RETRIES")
    retry_delay: float = Field(default=1.0, alias="RETRY_DELAY")

    # Circuit breaker
    circuit_failure_threshold: int = Field(
        default=5, alias="CIRCUIT_FAILURE_THRESHOLD"
    )
    circuit_reset_seconds: float = Field(default=60.0, alias="CIRCUIT_RESET_SECONDS")

    # Cache
    cache_gc_seconds: float = Field(default=300.0, alias="CACHE_GC_SECONDS")

    # Polling
    poll_max_interval: float = Field(default=600.0, alias="POLL_MAX_INTERVAL")
    poll_backoff_factor: float = Field(default=2.0, alias="POLL_BACKOFF_FACTOR")
    poll_hidden_multiplier: float = Field(
        default=math.inf, alias="POLL_HIDDEN_MULTIPLIER"
    )
    poll_idle_after_seconds: float = Field(default=300.0, alias="POLL_IDLE_AFTER_SECONDS")
    poll_idle_multiplier: float = Field(default=4.0, alias="POLL_IDLE_MULTIPLIER")

    # Resources
    reconnect_refresh_age_seconds: float = Field(
        default=60.0, alias="RECONNECT_REFRESH_AGE_SECONDS"
    )

    # Connectivity
    reconnect_grace_seconds: float = Field(default=3.0, alias="RECONNECT_GRACE_SECONDS")
    connectivity_debounce_seconds: float = Field(
        default=0.0, alias="CONNECTIVITY_DEBOUNCE_SECONDS"
    )
    probe_interval_seconds: float = Field(default=0.0, alias="PROBE_INTERVAL_SECONDS")

    # Presentation
    locale: str = Field(default="nl", alias="LOCALE")
    debug: bool = Field(default=False, alias="DEBUG")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment (after .env is loaded)."""
        env = {k: v for k, v in os.environ.items() if v != ""}
        return cls.model_validate(env)


global_settings = Settings.from_env()
