"""Client configuration.

The verification core is configured only through constructor arguments.
Gateway endpoint settings may additionally come from ``SIWA_*`` variables.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APPLE_BASE_URL = "https://appleid.apple.com"
APPLE_ISSUER = "https://appleid.apple.com"
USER_AGENT_DEFAULT = "siwa-python"

REFRESH_PERIOD_DEFAULT = 32 * 60
FETCH_TIMEOUT_DEFAULT = 30.0
REFRESH_ATTEMPTS_DEFAULT = 3


class GatewaySettings(BaseSettings):
    """Apple REST endpoint settings."""

    model_config = SettingsConfigDict(env_prefix="SIWA_")

    base_url: str = APPLE_BASE_URL
    user_agent: str = USER_AGENT_DEFAULT


class ClientSettings(BaseModel):
    """Key refresh and verification settings."""

    model_config = ConfigDict(frozen=True)

    refresh_period: float = Field(default=REFRESH_PERIOD_DEFAULT, gt=0)
    fetch_timeout: float = Field(default=FETCH_TIMEOUT_DEFAULT, gt=0)
    refresh_attempts: int = Field(default=REFRESH_ATTEMPTS_DEFAULT, ge=1)
    notify_on_stale: bool = False
    issuer: str = APPLE_ISSUER
    leeway: float = Field(default=0, ge=0)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
