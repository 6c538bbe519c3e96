"""
Key agreement for HardenMqtt devices.

Each device owns one long-term X25519 key pair.  Paired devices derive a
shared key from their own secret and the peer's public key:

    shared_key = SHA-256( X25519(our_secret, peer_public) )

Public interface consumed by identity.py and pairing.py:
  - KeyPair.generate()               -> KeyPair   (fresh secret)
  - KeyPair(secret)                  -> KeyPair   (secret loaded from settings)
  - kp.public / kp.public_b64        -> bytes / str  (advertise this to peers)
  - kp.shared_key(peer_pub)          -> bytes     (32-byte shared key)
  - validate_public_key(peer_pub)    -> raises ValueError on bad key material
"""

from __future__ import annotations

import base64

from Crypto.Hash import SHA256
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)

KEY_SIZE = 32


def validate_public_key(public_key: bytes) -> X25519PublicKey:
    """Parse raw public key bytes.  Raises ValueError if they are not a key."""
    return X25519PublicKey.from_public_bytes(public_key)


class KeyPair:
    """Long-term key pair.  The public key is always derived from the secret."""

    def __init__(self, secret: bytes) -> None:
        # Raises ValueError unless secret is exactly KEY_SIZE bytes
        self._private_key = X25519PrivateKey.from_private_bytes(secret)
        self.secret = bytes(secret)
        self.public = self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    @classmethod
    def generate(cls) -> "KeyPair":
        private_key = X25519PrivateKey.generate()
        secret = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return cls(secret)

    @property
    def secret_b64(self) -> str:
        return base64.b64encode(self.secret).decode("ascii")

    @property
    def public_b64(self) -> str:
        return base64.b64encode(self.public).decode("ascii")

    def shared_key(self, peer_public_key: bytes) -> bytes:
        """
        Compute the 32-byte shared key with a peer.

        Raises ValueError for malformed keys and for low-order points that
        would give an all-zero agreement.
        """
        peer_pub = validate_public_key(peer_public_key)
        raw_shared = self._private_key.exchange(peer_pub)
        return SHA256.new(raw_shared).digest()
