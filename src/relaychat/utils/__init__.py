"""Nostr key handling and nostr-sdk client helpers.

The utils layer sits in the middle of the diamond DAG, depending only on
[relaychat.models][relaychat.models].

Attributes:
    keys: Signing key loading from environment variables and public key
        normalization (``npub1`` bech32 or hex to lowercase hex).
    protocol: ``nostr_sdk.Client`` factory with optional SOCKS5 proxy, and
        the ``#d`` filter and ``d`` tag used to address thread events.

Note:
    The utils layer has **zero** imports from ``relaychat.core`` or
    ``relaychat.services``.

Examples:
    ```python
    from relaychat.utils.keys import normalize_public_key
    from relaychat.utils.protocol import create_client, thread_filter
    ```
"""
