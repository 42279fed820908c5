"""Nostr key handling: signing keys from the environment, public key normalization.

Warning:
    Private keys must never be stored in configuration files or logged.
    [KeysConfig][relaychat.utils.keys.KeysConfig] reads them from the
    environment variable it is pointed at.

Examples:
    ```python
    os.environ["RELAYCHAT_PRIVATE_KEY"] = "nsec1..."  # pragma: allowlist secret
    keys = load_keys_from_env("RELAYCHAT_PRIVATE_KEY")
    normalize_public_key("npub1...")  # 64-char lowercase hex
    ```
"""

from __future__ import annotations

import os
from typing import Any

from nostr_sdk import Keys, PublicKey
from pydantic import BaseModel, Field, model_validator

from relaychat.exceptions import ConfigurationError, InvalidInputError


ENV_PRIVATE_KEY = "RELAYCHAT_PRIVATE_KEY"  # pragma: allowlist secret


def load_keys_from_env(env_var: str) -> Keys:
    """Parse the private key (``nsec1`` bech32 or 64-char hex) held in *env_var*.

    Raises:
        ConfigurationError: If the variable is unset, empty, or not a valid key.
    """
    value = os.getenv(env_var)
    if not value:
        raise ConfigurationError(f"{env_var} environment variable is required")

    try:
        return Keys.parse(value)
    except Exception as e:  # nostr-sdk FFI raises its own NostrSdkError type
        raise ConfigurationError(f"{env_var} does not hold a valid private key") from e


def normalize_public_key(value: str) -> str:
    """Return the canonical 64-char lowercase hex form of a public key.

    Accepts ``npub1`` bech32 and hex in any case, ignoring surrounding
    whitespace.

    Raises:
        InvalidInputError: If *value* is not a string or not a valid key.
    """
    if not isinstance(value, str):
        raise InvalidInputError(f"public key must be a str, got {type(value).__name__}")
    text = value.strip()
    if not text or "\x00" in text:
        raise InvalidInputError("public key must be a non-empty string")

    try:
        return PublicKey.parse(text).to_hex()
    except Exception as e:  # nostr-sdk FFI raises its own NostrSdkError type
        raise InvalidInputError(f"invalid public key: {value!r}") from e


class KeysConfig(BaseModel):
    """Pydantic model that loads signing keys from an environment variable.

    Attributes:
        keys_env: Environment variable name for the private key.
        keys: Loaded ``nostr_sdk.Keys`` (private plus derived public key).

    Warning:
        ``keys`` holds a live private key. ``arbitrary_types_allowed`` is
        required because ``nostr_sdk.Keys`` is a Rust-backed FFI type.
    """

    model_config = {"arbitrary_types_allowed": True}

    keys_env: str = Field(
        default=ENV_PRIVATE_KEY,
        min_length=1,
        description="Environment variable name for private key",
    )
    keys: Keys = Field(description="Keys loaded from keys_env")

    @model_validator(mode="before")
    @classmethod
    def _load_keys_from_env(cls, data: Any) -> Any:
        if isinstance(data, dict) and "keys" not in data:
            env_var = data.get("keys_env", ENV_PRIVATE_KEY)
            data = {**data, "keys": load_keys_from_env(env_var)}
        return data

    @property
    def public_key_hex(self) -> str:
        return self.keys.public_key().to_hex()
