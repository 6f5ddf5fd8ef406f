"""Summary: Encoding utilities for channel credentials at rest.

Importance: Keeps OAuth tokens obscured inside the local SQLite database.
Alternatives: Use a dedicated secrets manager or strong encryption library.
"""

from __future__ import annotations

import base64
import hashlib
import json

from channelnexus.models import (
    ChannelCredentials,
    ProviderType,
    credentials_from_dict,
    credentials_to_dict,
)


class CredentialCodec:
    """Summary: Reversible encoder for provider credential records.

    Importance: Provides a lightweight obfuscation layer so tokens never sit in plain text.
    Alternatives: Use a proper encryption library with key management.
    """

    def __init__(self, secret: str) -> None:
        self._secret = (secret or "channelnexus").encode("utf-8")

    def encode(self, credentials: ChannelCredentials) -> str:
        """Summary: Serialize and obfuscate a credential record.

        Importance: Avoids storing raw access and refresh tokens.
        Alternatives: Store tokens in a vault keyed by channel ID.
        """

        raw = json.dumps(credentials_to_dict(credentials), sort_keys=True).encode("utf-8")
        return base64.urlsafe_b64encode(_xor(raw, self._secret)).decode("ascii")

    def decode(self, provider: ProviderType, payload: str) -> ChannelCredentials:
        """Summary: Restore a credential record for a provider.

        Importance: Allows provider sync code to use stored tokens.
        Alternatives: Require re-authentication for every sync.
        """

        raw = _xor(base64.urlsafe_b64decode(payload.encode("ascii")), self._secret)
        return credentials_from_dict(provider, json.loads(raw.decode("utf-8")))


def _xor(data: bytes, secret: bytes) -> bytes:
    key = _keystream(secret, len(data))
    return bytes(b ^ k for b, k in zip(data, key))


def _keystream(secret: bytes, length: int) -> bytes:
    """Summary: Derive a deterministic keystream from a secret.

    Importance: Keeps encoding reversible without external dependencies.
    Alternatives: Use a proper stream cipher.
    """

    blocks = []
    counter = 0
    while sum(len(block) for block in blocks) < length:
        blocks.append(hashlib.sha256(secret + counter.to_bytes(4, "big")).digest())
        counter += 1
    return b"".join(blocks)[:length]
