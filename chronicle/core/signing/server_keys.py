"""
Server Signing Keyring

Holds the server's own Ed25519 keypair. It is established once at startup
and read by every request (confusion guard, signed error responses).
"""

import logging
from pathlib import Path
from typing import Optional, Union

from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from chronicle.core.signing.keys import (
    generate_keypair,
    load_private_key,
    public_key_to_base64,
    save_private_key,
)

logger = logging.getLogger(__name__)


class ServerKeyring:
    """The server's signing identity. Immutable after construction."""

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key
        self._public_key = private_key.public_key()

    @property
    def public_key(self) -> Ed25519PublicKey:
        return self._public_key

    def sign(self, data: bytes) -> bytes:
        return self._private_key.sign(data)

    @classmethod
    def generate(cls) -> "ServerKeyring":
        private_key, _ = generate_keypair()
        return cls(private_key)


def load_server_keyring(path: Union[str, Path], autogenerate: bool = True) -> ServerKeyring:
    """
    Load the server keyring from a PEM file.

    Args:
        path: Private key file
        autogenerate: Create and save a new keypair when the file is missing

    Raises:
        FileNotFoundError: If the file is missing and autogenerate is False
        ValueError: If the file does not hold an Ed25519 key
    """
    path = Path(path)
    if not path.exists():
        if not autogenerate:
            raise FileNotFoundError(f"Server signing key not found: {path}")
        private_key, public_key = generate_keypair()
        save_private_key(private_key, path)
        logger.warning(
            f"Generated new server signing key at {path} "
            f"(public key {public_key_to_base64(public_key)})"
        )
        return ServerKeyring(private_key)

    keyring = ServerKeyring(load_private_key(path))
    logger.info(f"Loaded server signing key (public key {public_key_to_base64(keyring.public_key)})")
    return keyring


# Global keyring instance
_keyring: Optional[ServerKeyring] = None


def get_server_keyring() -> ServerKeyring:
    """
    Get the process-wide server keyring.

    Raises:
        RuntimeError: If no keyring has been installed yet
    """
    if _keyring is None:
        raise RuntimeError("Server signing key not initialized")
    return _keyring


def set_server_keyring(keyring: Optional[ServerKeyring]) -> None:
    """Install the process-wide keyring (startup, tests)."""
    global _keyring
    _keyring = keyring
