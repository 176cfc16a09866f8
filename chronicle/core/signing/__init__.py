"""
Asymmetric Request Signing Module

Ed25519-based request signing for Chronicle client authentication:
key handling, the immutable request value, the detached-signature verifier,
the client directory and the server keyring.
"""

from chronicle.core.signing.errors import (
    GateError,
    ClientNotFound,
    SecurityViolation,
    SignatureInvalid,
    ServerKeyMisuse,
)
from chronicle.core.signing.keys import (
    generate_keypair,
    keys_equal,
    load_private_key,
    load_public_key,
    public_key_to_base64,
    base64_to_public_key,
)
from chronicle.core.signing.request import SignedRequest
from chronicle.core.signing.registry import (
    ClientDirectory,
    ClientRecord,
    StaticClientRegistry,
    load_static_clients,
)
from chronicle.core.signing.server_keys import (
    ServerKeyring,
    get_server_keyring,
    set_server_keyring,
    load_server_keyring,
)
from chronicle.core.signing.verify import (
    Ed25519RequestVerifier,
    RequestVerifier,
    NonceCache,
    create_canonical_request,
    sign_request,
    verify_signature,
    VerificationResult,
)

__all__ = [
    # Errors
    "GateError",
    "ClientNotFound",
    "SecurityViolation",
    "SignatureInvalid",
    "ServerKeyMisuse",
    # Keys
    "generate_keypair",
    "keys_equal",
    "load_private_key",
    "load_public_key",
    "public_key_to_base64",
    "base64_to_public_key",
    # Requests
    "SignedRequest",
    # Directory
    "ClientDirectory",
    "ClientRecord",
    "StaticClientRegistry",
    "load_static_clients",
    # Server keys
    "ServerKeyring",
    "get_server_keyring",
    "set_server_keyring",
    "load_server_keyring",
    # Verification
    "Ed25519RequestVerifier",
    "RequestVerifier",
    "NonceCache",
    "create_canonical_request",
    "sign_request",
    "verify_signature",
    "VerificationResult",
]
