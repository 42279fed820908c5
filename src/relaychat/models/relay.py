"""
Validated Nostr relay URL with network type detection.

Parses and normalizes WebSocket relay URLs (``ws://`` or ``wss://``) and
classifies the host into a [NetworkType][relaychat.models.constants.NetworkType].
Unlike a crawler, a chat client connects wherever its user points it, so the
scheme the user chose is kept and local hosts are accepted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from ipaddress import ip_address
from typing import Any, ClassVar

from rfc3986 import uri_reference
from rfc3986.exceptions import UnpermittedComponentError, ValidationError
from rfc3986.validators import Validator

from relaychat.exceptions import InvalidInputError

from .constants import NetworkType


WEBSOCKET_SCHEMES = ("ws", "wss")


def normalize_relay_input(raw: str) -> str:
    """Prefix ``wss://`` to a bare host the way users type relays in.

    ``"relay.example.com"`` becomes ``"wss://relay.example.com"``; input that
    already carries a scheme is only stripped of surrounding whitespace.
    """
    value = raw.strip()
    if value and "://" not in value:
        return f"wss://{value}"
    return value


@dataclass(frozen=True, slots=True)
class Relay:
    """Immutable, validated relay URL.

    Attributes:
        url: Normalized URL including scheme. Default ports are dropped and
            trailing slashes removed.
        network: Detected ``NetworkType`` enum value.
        scheme: URL scheme (``ws`` or ``wss``), as given.
        host: Hostname or IP address (brackets stripped for IPv6).
        port: Explicit non-default port, or ``None``.
        path: URL path component, or ``None``.

    Raises:
        InvalidInputError: If the URL is malformed, uses a scheme other than
            ``ws``/``wss``, carries a query or fragment, or contains null bytes.

    Examples:
        ```python
        relay = Relay("wss://relay.damus.io/")
        relay.url       # 'wss://relay.damus.io'
        relay.network   # NetworkType.CLEARNET
        Relay("ws://abc.onion").network  # NetworkType.TOR
        ```
    """

    raw_url: str = field(repr=False)

    url: str = field(init=False)
    network: NetworkType = field(init=False)
    scheme: str = field(init=False)
    host: str = field(init=False)
    port: int | None = field(init=False)
    path: str | None = field(init=False)

    _DEFAULT_PORTS: ClassVar[dict[str, int]] = {"ws": 80, "wss": 443}

    _NETWORK_TLDS: ClassVar[dict[str, NetworkType]] = {
        ".onion": NetworkType.TOR,
        ".i2p": NetworkType.I2P,
        ".loki": NetworkType.LOKI,
    }

    def __post_init__(self) -> None:
        if not isinstance(self.raw_url, str):
            raise InvalidInputError(f"relay url must be a str, got {type(self.raw_url).__name__}")
        if "\x00" in self.raw_url:
            raise InvalidInputError("Relay URL contains null bytes")

        parsed = self._parse(self.raw_url)

        object.__setattr__(self, "url", parsed["url"])
        object.__setattr__(self, "network", parsed["network"])
        object.__setattr__(self, "scheme", parsed["scheme"])
        object.__setattr__(self, "host", parsed["host"])
        object.__setattr__(self, "port", parsed["port"])
        object.__setattr__(self, "path", parsed["path"])

    def __str__(self) -> str:
        return self.url

    @property
    def is_overlay(self) -> bool:
        """Whether the relay lives on an overlay network that needs a proxy."""
        return self.network != NetworkType.CLEARNET

    @staticmethod
    def _detect_network(host: str) -> NetworkType:
        """Classify a hostname into a network type.

        Overlay TLDs are checked first; everything else, including IP
        literals and local names, is clearnet.

        Raises:
            InvalidInputError: If a domain label is empty or hyphen-bounded.
        """
        host_bare = host.lower().strip("[]")

        for tld, network in Relay._NETWORK_TLDS.items():
            if host_bare.endswith(tld):
                return network

        try:
            ip_address(host_bare)
        except ValueError:
            pass
        else:
            return NetworkType.CLEARNET

        labels = host_bare.split(".")
        if not all(label and not label.startswith("-") and not label.endswith("-") for label in labels):
            raise InvalidInputError(f"Invalid host: '{host}'")
        return NetworkType.CLEARNET

    @staticmethod
    def _parse(raw: str) -> dict[str, Any]:
        """Parse and normalize a raw relay URL string.

        Raises:
            InvalidInputError: If the scheme is not ``ws``/``wss`` or the URI
                is invalid.
        """
        validator = (
            Validator()
            .require_presence_of("scheme", "host")
            .allow_schemes(*WEBSOCKET_SCHEMES)
            .check_validity_of("scheme", "host", "port", "path")
        )

        try:
            uri = uri_reference(raw.strip()).normalize()
            validator.validate(uri)
        except UnicodeError:
            raise InvalidInputError("Relay URL is not encodable as UTF-8") from None
        except UnpermittedComponentError:
            raise InvalidInputError("Invalid scheme: must be ws or wss") from None
        except ValidationError as e:
            raise InvalidInputError(f"Invalid URL: {e}") from None

        if uri.query:
            raise InvalidInputError(f"Relay URL must not contain a query string: ?{uri.query}")
        if uri.fragment:
            raise InvalidInputError(f"Relay URL must not contain a fragment: #{uri.fragment}")

        scheme = uri.scheme
        host = uri.host.strip("[]")
        if not host:
            raise InvalidInputError("Relay URL has an empty host")
        network = Relay._detect_network(host)

        port = int(uri.port) if uri.port else None
        if port == 0:
            raise InvalidInputError("Relay URL port must be between 1 and 65535")
        if port == Relay._DEFAULT_PORTS[scheme]:
            port = None

        path = uri.path or ""
        while "//" in path:
            path = path.replace("//", "/")
        path = path.rstrip("/") or None

        formatted_host = f"[{host}]" if ":" in host else host
        authority = f"{formatted_host}:{port}" if port is not None else formatted_host

        return {
            "url": f"{scheme}://{authority}{path or ''}",
            "scheme": scheme,
            "host": host,
            "port": port,
            "path": path,
            "network": network,
        }

    @classmethod
    def parse(cls, raw: str) -> Relay:
        """Build a ``Relay`` from user input, adding ``wss://`` when no scheme is given."""
        if not isinstance(raw, str):
            raise InvalidInputError(f"relay url must be a str, got {type(raw).__name__}")
        return cls(normalize_relay_input(raw))

    @classmethod
    def try_parse(cls, raw: Any) -> Relay | None:
        """Return a ``Relay`` for a valid ws/wss URL, or ``None`` otherwise."""
        if not isinstance(raw, str):
            return None
        try:
            return cls(raw)
        except InvalidInputError:
            return None
