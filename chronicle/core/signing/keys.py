"""
Ed25519 keys for clients and for the server.

Public keys travel as base64 of the 32 raw bytes (clients.yaml, the
chronicle_clients table, CLI output). Private keys are stored as
unencrypted PKCS8 PEM files readable by their owner only.
"""

import base64
import binascii
import os
import secrets
from pathlib import Path
from typing import Tuple, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

PUBLIC_KEY_BYTES = 32
PRIVATE_KEY_SUFFIX = ".key"
PUBLIC_KEY_SUFFIX = ".pub"

PathLike = Union[str, Path]


def generate_keypair() -> Tuple[Ed25519PrivateKey, Ed25519PublicKey]:
    """
    Create a fresh keypair.

    Example:
        >>> private_key, public_key = generate_keypair()
        >>> public_key_to_base64(public_key)
        'hX0...='
    """
    private_key = Ed25519PrivateKey.generate()
    return private_key, private_key.public_key()


def public_key_to_bytes(public_key: Ed25519PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def public_key_to_base64(public_key: Ed25519PublicKey) -> str:
    """Encode a public key the way directories store it (44 characters)."""
    return base64.b64encode(public_key_to_bytes(public_key)).decode("ascii")


def base64_to_public_key(b64_key: str) -> Ed25519PublicKey:
    """
    Parse a directory-stored public key.

    Args:
        b64_key: Standard base64 of the raw key, no whitespace

    Raises:
        ValueError: If the value is not base64 or not PUBLIC_KEY_BYTES long
    """
    try:
        raw = base64.b64decode(b64_key, validate=True)
    except (binascii.Error, TypeError) as e:
        raise ValueError(f"Invalid public key: not base64 ({e})") from e

    if len(raw) != PUBLIC_KEY_BYTES:
        raise ValueError(f"Invalid public key: {len(raw)} bytes, expected {PUBLIC_KEY_BYTES}")
    return Ed25519PublicKey.from_public_bytes(raw)


def keys_equal(a: Ed25519PublicKey, b: Ed25519PublicKey) -> bool:
    """
    Compare two public keys in constant time.

    Ed25519PublicKey equality is not guaranteed to be timing-safe,
    so the raw encodings are compared with secrets.compare_digest.
    """
    return secrets.compare_digest(public_key_to_bytes(a), public_key_to_bytes(b))


def save_private_key(private_key: Ed25519PrivateKey, path: PathLike) -> Path:
    """Write a private key as PEM with mode 0600, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    path.write_bytes(pem)
    os.chmod(path, 0o600)
    return path


def save_keypair(private_key: Ed25519PrivateKey, directory: PathLike, name: str = "signing") -> Tuple[Path, Path]:
    """
    Write `<name>.key` (PEM) and `<name>.pub` (base64) into `directory`.

    Returns:
        (private_key_path, public_key_path)
    """
    directory = Path(directory)
    private_path = save_private_key(private_key, directory / f"{name}{PRIVATE_KEY_SUFFIX}")
    public_path = directory / f"{name}{PUBLIC_KEY_SUFFIX}"
    public_path.write_text(public_key_to_base64(private_key.public_key()) + "\n")
    return private_path, public_path


def load_private_key(path: PathLike) -> Ed25519PrivateKey:
    """
    Read a PEM private key written by save_private_key().

    Raises:
        FileNotFoundError: If the file is missing
        ValueError: If the file is not an unencrypted Ed25519 PEM key
    """
    path = Path(path)
    pem = path.read_bytes()

    try:
        private_key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ValueError(f"Failed to load private key from {path}: {e}") from e

    if not isinstance(private_key, Ed25519PrivateKey):
        raise ValueError(f"{path} holds a {type(private_key).__name__}, not an Ed25519 key")
    return private_key


def load_public_key(path: PathLike) -> Ed25519PublicKey:
    """Read a `.pub` file written by save_keypair()."""
    return base64_to_public_key(Path(path).read_text().strip())
