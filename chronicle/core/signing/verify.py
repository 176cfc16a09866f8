"""
Detached request signatures.

A client signs the UTF-8 bytes of

    METHOD \\n PATH[?QUERY] \\n TIMESTAMP \\n NONCE \\n BODY_HASH

with its Ed25519 key and sends the signature base64-encoded in X-Signature,
next to X-Timestamp (unix seconds) and X-Nonce (32 hex characters).
BODY_HASH is the lowercase SHA-256 hex digest of the body, or the literal
"empty" for an empty body.

verify_signature() holds the checks; Ed25519RequestVerifier applies them to
a SignedRequest on behalf of the gate.
"""

import base64
import binascii
import hashlib
import logging
import secrets
import string
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from chronicle.core.signing.errors import SignatureInvalid
from chronicle.core.signing.request import SignedRequest

logger = logging.getLogger(__name__)


HEADER_TIMESTAMP = "X-Timestamp"
HEADER_NONCE = "X-Nonce"
HEADER_SIGNATURE = "X-Signature"

EMPTY_BODY_HASH = "empty"

# Allowed clock skew in either direction
TIMESTAMP_TOLERANCE_SECONDS = 300

NONCE_LENGTH = 32

MAX_TRACKED_NONCES = 100_000

_HEX = frozenset(string.hexdigits)


class VerificationError(Enum):
    """Why a signature was refused. Logged server-side only."""
    MISSING_HEADERS = "missing_headers"
    DUPLICATE_HEADERS = "duplicate_headers"
    INVALID_TIMESTAMP_FORMAT = "invalid_timestamp_format"
    TIMESTAMP_TOO_OLD = "timestamp_too_old"
    TIMESTAMP_TOO_NEW = "timestamp_too_new"
    INVALID_NONCE_FORMAT = "invalid_nonce_format"
    NONCE_REUSED = "nonce_reused"
    INVALID_SIGNATURE_FORMAT = "invalid_signature_format"
    SIGNATURE_VERIFICATION_FAILED = "signature_verification_failed"


@dataclass
class VerificationResult:
    """
    Outcome of verify_signature().

    `timestamp` and `nonce` are only set on success; `error` and
    `error_message` only on failure.
    """
    success: bool
    error: Optional[VerificationError] = None
    error_message: Optional[str] = None
    timestamp: Optional[int] = None
    nonce: Optional[str] = None

    @classmethod
    def ok(cls, timestamp: int, nonce: str) -> "VerificationResult":
        return cls(success=True, timestamp=timestamp, nonce=nonce)

    @classmethod
    def fail(cls, error: VerificationError, message: str) -> "VerificationResult":
        return cls(success=False, error=error, error_message=message)


def hash_body(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest() if body else EMPTY_BODY_HASH


def create_canonical_request(method: str, path: str, timestamp: int, nonce: str, body: bytes = b"") -> str:
    """
    Build the string a client signs.

    Example:
        >>> create_canonical_request("get", "/chronicle/client/whoami", 1703001234, "ab" * 16)
        'GET\\n/chronicle/client/whoami\\n1703001234\\nabab...\\nempty'
    """
    return "\n".join((method.upper(), path, str(timestamp), nonce, hash_body(body)))


def validate_timestamp(
    timestamp: int,
    tolerance_seconds: int = TIMESTAMP_TOLERANCE_SECONDS,
) -> Optional[VerificationError]:
    """Return the skew error for `timestamp`, or None if it is fresh enough."""
    skew = int(time.time()) - timestamp
    if skew > tolerance_seconds:
        return VerificationError.TIMESTAMP_TOO_OLD
    if skew < -tolerance_seconds:
        return VerificationError.TIMESTAMP_TOO_NEW
    return None


def validate_nonce(nonce: str) -> Optional[VerificationError]:
    # Character check, not int(x, 16): that would accept "0x" prefixes and underscores
    if len(nonce) != NONCE_LENGTH or not _HEX.issuperset(nonce):
        return VerificationError.INVALID_NONCE_FORMAT
    return None


def _matches_any(public_key: Ed25519PublicKey, message: bytes, signatures_b64: List[str]) -> Optional[VerificationError]:
    """None if one of the signatures verifies, else the most specific error seen."""
    error = VerificationError.SIGNATURE_VERIFICATION_FAILED
    for encoded in signatures_b64:
        try:
            signature = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            error = VerificationError.INVALID_SIGNATURE_FORMAT
            continue
        try:
            public_key.verify(signature, message)
            return None
        except InvalidSignature:
            continue
    return error


def verify_signature(
    public_key: Ed25519PublicKey,
    method: str,
    path: str,
    timestamp_str: str,
    nonce: str,
    signatures_b64: List[str],
    body: bytes = b"",
    check_nonce_reuse: Optional[Callable[[str], bool]] = None,
    tolerance_seconds: int = TIMESTAMP_TOLERANCE_SECONDS,
) -> VerificationResult:
    """
    Check a detached signature against `public_key`.

    Order: timestamp syntax, timestamp skew, nonce syntax, signature,
    nonce reuse. The nonce is recorded last, so a forged request cannot
    use up a nonce that belongs to a legitimate client.

    Args:
        public_key: The claimed client's key
        method: HTTP method
        path: Path with query string, exactly as sent
        timestamp_str: Raw X-Timestamp value
        nonce: Raw X-Nonce value
        signatures_b64: Every X-Signature value; one match is enough
        body: Raw request body
        check_nonce_reuse: Records the nonce and returns True if it was seen before
        tolerance_seconds: Allowed clock skew

    Returns:
        VerificationResult
    """
    try:
        timestamp = int(timestamp_str)
    except (ValueError, TypeError):
        return VerificationResult.fail(
            VerificationError.INVALID_TIMESTAMP_FORMAT,
            f"X-Timestamp is not an integer: {timestamp_str!r}",
        )

    skew_error = validate_timestamp(timestamp, tolerance_seconds)
    if skew_error is not None:
        return VerificationResult.fail(
            skew_error,
            f"X-Timestamp {timestamp} outside ±{tolerance_seconds}s of server time {int(time.time())}",
        )

    if validate_nonce(nonce) is not None:
        return VerificationResult.fail(
            VerificationError.INVALID_NONCE_FORMAT,
            f"X-Nonce must be {NONCE_LENGTH} hex characters, got {nonce!r}",
        )

    if not signatures_b64:
        return VerificationResult.fail(VerificationError.MISSING_HEADERS, f"No {HEADER_SIGNATURE} value")

    message = create_canonical_request(method, path, timestamp, nonce, body).encode("utf-8")
    signature_error = _matches_any(public_key, message, signatures_b64)
    if signature_error is not None:
        return VerificationResult.fail(
            signature_error,
            f"None of {len(signatures_b64)} signature(s) verified",
        )

    if check_nonce_reuse is not None and check_nonce_reuse(nonce):
        return VerificationResult.fail(VerificationError.NONCE_REUSED, f"Replayed nonce {nonce}")

    return VerificationResult.ok(timestamp=timestamp, nonce=nonce)


class NonceCache:
    """
    Recently accepted nonces, forgotten after `ttl_seconds`.

    `ttl_seconds` should be at least twice the timestamp tolerance so a
    request cannot be replayed after its nonce expires. At most
    `max_entries` are kept; the oldest go first. Thread-safe.
    """

    def __init__(self, ttl_seconds: float = 2 * TIMESTAMP_TOLERANCE_SECONDS, max_entries: int = MAX_TRACKED_NONCES):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def check_and_record(self, nonce: str) -> bool:
        """Record `nonce`; return True if it was already present (a replay)."""
        now = time.time()
        with self._lock:
            self._expire(now)
            if nonce in self._seen:
                return True
            self._seen[nonce] = now
            overflow = len(self._seen) - self.max_entries
            if overflow > 0:
                # Insertion order == age
                for old in list(self._seen)[:overflow]:
                    del self._seen[old]
            return False

    def _expire(self, now: float) -> None:
        cutoff = now - self.ttl_seconds
        for nonce in [n for n, seen_at in self._seen.items() if seen_at < cutoff]:
            del self._seen[nonce]

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)


class RequestVerifier(Protocol):
    """Anything that checks a request signature against a public key."""

    def verify(self, request: SignedRequest, public_key: Ed25519PublicKey) -> SignedRequest:
        """Return the request if it verifies; raise SignatureInvalid otherwise."""
        ...


class Ed25519RequestVerifier:
    """
    The gate's verifier for X-Timestamp / X-Nonce / X-Signature requests.

    The refusal reason is logged here; SignatureInvalid carries only the
    generic message.
    """

    def __init__(
        self,
        tolerance_seconds: int = TIMESTAMP_TOLERANCE_SECONDS,
        nonce_cache: Optional[NonceCache] = None,
    ):
        self.tolerance_seconds = tolerance_seconds
        self.nonce_cache = nonce_cache

    def verify(self, request: SignedRequest, public_key: Ed25519PublicKey) -> SignedRequest:
        timestamps = request.get_header(HEADER_TIMESTAMP)
        nonces = request.get_header(HEADER_NONCE)
        signatures = request.get_header(HEADER_SIGNATURE)

        if not (timestamps and nonces and signatures):
            self._refuse(request, VerificationResult.fail(
                VerificationError.MISSING_HEADERS,
                f"Need {HEADER_TIMESTAMP}, {HEADER_NONCE} and {HEADER_SIGNATURE}",
            ))
        if len(timestamps) > 1 or len(nonces) > 1:
            self._refuse(request, VerificationResult.fail(
                VerificationError.DUPLICATE_HEADERS,
                f"{HEADER_TIMESTAMP} and {HEADER_NONCE} may each appear once",
            ))

        result = verify_signature(
            public_key=public_key,
            method=request.method,
            path=request.path,
            timestamp_str=timestamps[0],
            nonce=nonces[0],
            signatures_b64=signatures,
            body=request.body,
            check_nonce_reuse=self.nonce_cache.check_and_record if self.nonce_cache is not None else None,
            tolerance_seconds=self.tolerance_seconds,
        )
        if not result.success:
            self._refuse(request, result)
        return request

    def _refuse(self, request: SignedRequest, result: VerificationResult) -> None:
        logger.warning(
            f"Signature refused for {request.method} {request.path}: "
            f"{result.error.value} ({result.error_message})"
        )
        raise SignatureInvalid()


def sign_request(
    private_key: Ed25519PrivateKey,
    method: str,
    path: str,
    body: bytes = b"",
    timestamp: Optional[int] = None,
    nonce: Optional[str] = None,
) -> Dict[str, str]:
    """
    Produce the signature headers for a request (clients, CLI, tests).

    Args:
        private_key: Client signing key
        method: HTTP method
        path: Path with query string, exactly as it will be sent
        body: Request body
        timestamp: Defaults to now
        nonce: Defaults to 16 random bytes, hex-encoded

    Returns:
        {"X-Timestamp": ..., "X-Nonce": ..., "X-Signature": ...}
    """
    timestamp = int(time.time()) if timestamp is None else timestamp
    nonce = secrets.token_hex(NONCE_LENGTH // 2) if nonce is None else nonce

    message = create_canonical_request(method, path, timestamp, nonce, body).encode("utf-8")
    return {
        HEADER_TIMESTAMP: str(timestamp),
        HEADER_NONCE: nonce,
        HEADER_SIGNATURE: base64.b64encode(private_key.sign(message)).decode("ascii"),
    }
