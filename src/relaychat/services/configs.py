"""Configuration models for the relaychat services.

Every model is a Pydantic v2 ``BaseModel``. The session and application
models reject unknown keys so that a misspelled option fails at load time
instead of being silently ignored.

Examples:
    ```yaml
    store:
      pool:
        database:
          host: localhost
          database: relaychat
      timeouts:
        query: 10.0
    session:
      relays:
        - wss://relay.damus.io
        - wss://nos.lol
      client_name: relaychat
      connect_timeout: 10.0
    threads:
      salt: nostr-tools
    metrics:
      enabled: true
      port: 8000
    ```
"""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from relaychat.core.metrics import MetricsConfig
from relaychat.core.pool import PoolConfig
from relaychat.core.store import StoreConfig
from relaychat.core.yaml import load_yaml
from relaychat.exceptions import ConfigurationError
from relaychat.models.constants import DEFAULT_RELAYS, DEFAULT_SALT, ENV_THREAD_SALT


def _salt_from_env() -> str:
    return os.getenv(ENV_THREAD_SALT) or DEFAULT_SALT


class SessionConfig(BaseModel):
    """Options for the connection session and its ``nostr_sdk.Client``.

    Attributes:
        relays: Relays used when the registry is reset to defaults.
        client_name: Value of the ``client`` tag added to published events
            (``None`` disables the tag).
        initial_validation_ratio: Fraction of fetched events whose signature
            is verified while trust has not been established.
        lowest_validation_ratio: Floor the ratio decays to as valid events
            keep arriving.
        profile_refresh_interval: Seconds a fetched profile stays cached.
        connect_timeout: Seconds to wait for the first relay connection
            before the session is reported degraded.
        status_interval: Seconds between relay status polls.
        proxy_url: SOCKS5 proxy for overlay relays.
        keys_env: Environment variable holding the signing key; ``None``
            builds a read-only client.
    """

    model_config = ConfigDict(extra="forbid")

    relays: list[str] = Field(default_factory=lambda: list(DEFAULT_RELAYS))
    client_name: str | None = Field(default="relaychat", min_length=1)
    initial_validation_ratio: float = Field(default=1.0, ge=0.0, le=1.0)
    lowest_validation_ratio: float = Field(default=0.1, ge=0.0, le=1.0)
    profile_refresh_interval: float = Field(default=300.0, ge=0.0)
    connect_timeout: float = Field(default=10.0, gt=0.0, le=300.0)
    status_interval: float = Field(default=2.0, gt=0.0, le=60.0)
    proxy_url: str | None = None
    keys_env: str | None = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def validate_ratios(self) -> SessionConfig:
        if self.lowest_validation_ratio > self.initial_validation_ratio:
            raise ValueError(
                f"lowest_validation_ratio ({self.lowest_validation_ratio}) must be <= "
                f"initial_validation_ratio ({self.initial_validation_ratio})"
            )
        return self


class ThreadConfig(BaseModel):
    """Thread addressing options.

    ``salt`` defaults to the ``RELAYCHAT_THREAD_SALT`` environment variable,
    falling back to ``"nostr-tools"``. Every client in a conversation must
    use the same salt to agree on thread identifiers.
    """

    model_config = ConfigDict(extra="forbid")

    salt: str = Field(default_factory=_salt_from_env)
    include_self: bool = Field(
        default=True, description="Add the local user's key to every participant set"
    )

    @field_validator("salt")
    @classmethod
    def validate_salt(cls, v: str) -> str:
        if "\x00" in v:
            raise ValueError("salt contains null bytes")
        return v


class StoreSettings(StoreConfig):
    """Store options plus the pool it runs on.

    ``pool`` is optional so that commands which never touch the database do
    not require the password environment variable to be set.
    """

    model_config = ConfigDict(extra="forbid")

    pool: PoolConfig | None = None


class AppConfig(BaseModel):
    """Top-level configuration file for the ``relaychat`` command."""

    model_config = ConfigDict(extra="forbid")

    store: StoreSettings = Field(default_factory=StoreSettings)
    session: SessionConfig = Field(default_factory=SessionConfig)
    threads: ThreadConfig = Field(default_factory=ThreadConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppConfig:
        """Validate *data*, reporting failures as ``ConfigurationError``."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_yaml(cls, config_path: str) -> AppConfig:
        return cls.from_dict(load_yaml(config_path))
