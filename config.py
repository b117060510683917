"""
Application settings.

All configuration is read once from the process environment (and an optional
.env file) into an immutable Settings object. The object is handed to the
token service, the storage adapter and the admin seed at startup; request
handlers reach it through ``app.state`` and never read the environment.
"""

import re
from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from errors import ConfigurationError

SEVEN_DAYS = 7 * 24 * 60 * 60

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value) -> int:
    """Parse ``3600``, ``"3600"``, ``"15m"``, ``"12h"`` or ``"7d"`` into seconds."""
    if isinstance(value, bool):
        raise ValueError("duration must be a number of seconds or <n>s/m/h/d")
    if isinstance(value, int):
        seconds = value
    else:
        match = _DURATION_RE.match(str(value).lower())
        if not match:
            raise ValueError("duration must be a number of seconds or <n>s/m/h/d")
        seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    if seconds <= 0:
        raise ValueError("duration must be positive")
    return seconds


class Settings(BaseSettings):
    JWT_SECRET: SecretStr
    JWT_EXPIRES_IN: int = SEVEN_DAYS
    JWT_ALGORITHM: str = "HS256"

    MONGO_URI: str = Field(
        default="mongodb://127.0.0.1:27017/connect",
        validation_alias=AliasChoices("MONGO_URI", "MONGODB_URI"),
    )
    DB_NAME: str = "connect"

    CLIENT_URL: Optional[str] = None
    COOKIE_SECURE: bool = False

    ADMIN_NAME: Optional[str] = None
    ADMIN_EMAIL: Optional[str] = None
    ADMIN_PASSWORD: Optional[SecretStr] = None

    STORAGE_BACKEND: Literal["cloudinary", "local"] = "cloudinary"
    CLOUDINARY_CLOUD_NAME: str = ""
    CLOUDINARY_API_KEY: str = ""
    CLOUDINARY_API_SECRET: SecretStr = SecretStr("")
    CLOUDINARY_FOLDER: str = "connect/products"
    UPLOAD_DIR: str = "uploads"
    PUBLIC_BASE_URL: str = "http://localhost:5000"

    CONTACT_EMAIL: str = ""
    CONTACT_PHONE: str = ""
    CONTACT_LOCATION: str = ""

    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 5000

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)

    @field_validator("JWT_SECRET")
    @classmethod
    def _secret_not_blank(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value().strip():
            raise ValueError("JWT_SECRET must not be empty")
        return value

    @field_validator("JWT_EXPIRES_IN", mode="before")
    @classmethod
    def _parse_lifetime(cls, value):
        return parse_duration(value)

    @property
    def admin_seed_configured(self) -> bool:
        return bool(self.ADMIN_NAME and self.ADMIN_EMAIL and self.ADMIN_PASSWORD)


def load_settings(**overrides) -> Settings:
    """Build Settings, turning a validation failure into a fatal ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise ConfigurationError(f"Invalid configuration ({fields}): {exc}") from exc


@lru_cache
def get_settings() -> Settings:
    return load_settings()
