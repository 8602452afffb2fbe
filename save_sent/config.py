"""Configuration management for the save-sent hooks."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so BaseSettings can pick values up seamlessly.
load_dotenv()

# RFC 5322 field-name: printable ASCII except the colon.
_FIELD_NAME = re.compile(r"^[!-9;-~]+$")


class Settings(BaseSettings):
    """Hook configuration derived from environment variables."""

    flag_name: str = Field("X-Save-Sent-Duplicate", alias="SAVE_SENT_FLAG_NAME")
    flag_value: str = Field("1", alias="SAVE_SENT_FLAG_VALUE")
    token_header: str = Field("X-Save-Sent-Token", alias="SAVE_SENT_TOKEN_HEADER")
    key_prefix: str = Field("save_sent", alias="SAVE_SENT_KEY_PREFIX")
    token_ttl: int = Field(60, ge=1, le=3600, alias="SAVE_SENT_TOKEN_TTL")

    store_backend: Literal["redis", "sqlite", "memory"] = Field("redis", alias="STORE_BACKEND")
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")
    redis_socket_timeout: float = Field(5.0, gt=0, alias="REDIS_SOCKET_TIMEOUT")
    token_store_db: Path = Field(Path("data/save_sent_tokens.db"), alias="TOKEN_STORE_DB")

    outbound_transport: Literal["sendmail", "http"] = Field("sendmail", alias="OUTBOUND_TRANSPORT")
    sendmail_path: Path = Field(Path("/usr/sbin/sendmail"), alias="SENDMAIL_PATH")
    relay_url: HttpUrl | None = Field(None, alias="RELAY_URL")
    relay_api_token: str | None = Field(None, alias="RELAY_API_TOKEN")
    relay_timeout: float = Field(30.0, gt=0, alias="RELAY_TIMEOUT")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("flag_name", "token_header", mode="before")
    @classmethod
    def _validate_header_name(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if not _FIELD_NAME.match(value):
                raise ValueError(f"{value!r} is not a valid header field name.")
        return value

    @field_validator("flag_value", "key_prefix", mode="before")
    @classmethod
    def _strip_required(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("Value must not be empty.")
        return value

    @field_validator("relay_url", "relay_api_token", mode="before")
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @model_validator(mode="after")
    def _validate_protocol(self):
        if self.flag_name.lower() == self.token_header.lower():
            raise ValueError("SAVE_SENT_FLAG_NAME and SAVE_SENT_TOKEN_HEADER must differ.")
        if self.outbound_transport == "http" and self.relay_url is None:
            raise ValueError("RELAY_URL is required for the http outbound transport.")
        return self

    def store_key(self, token: str) -> str:
        """Namespaced store key for a token."""
        return f"{self.key_prefix}:{token}"

    @property
    def relay_endpoint(self) -> str:
        return str(self.relay_url).rstrip("/")
