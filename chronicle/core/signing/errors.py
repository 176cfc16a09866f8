"""
Signature gate failures.

Every failure the gate can produce derives from GateError and is turned
into a 403 response in exactly one place (ClientSignatureGate.reject).
Callers only ever see the message, never the class.
"""
from typing import Optional


class GateError(Exception):
    """Base class for request authentication failures."""

    default_message = "Request could not be authenticated"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ClientNotFound(GateError):
    """Client header missing, or the identifier is unknown within the lookup scope."""

    default_message = "Client not found"


class SecurityViolation(GateError):
    """The request makes an ambiguous identity claim."""

    default_message = "Only one client header may be provided"


class SignatureInvalid(GateError):
    """The detached signature did not verify, for whatever reason."""

    default_message = "No valid signature given for this HTTP request"


class ServerKeyMisuse(GateError):
    """A client presented the server's own signing key."""

    default_message = "The server's signing keys cannot be used by clients."
