"""
Client Signature Gate

Checks the client signature on an inbound request before any
identity-dependent handler runs.

Flow:
1. Exactly one client header → client identifier
2. Identifier → public key, via the client directory (admin-only for the admin gate).
   An `instance` query parameter naming a configured instance selects that
   instance's directory instead
3. Detached signature verified against that key
4. Key must not be the server's own signing key
5. A copy of the request carrying `authenticated` and `public_key` is forwarded

Every failure becomes a 403 through reject(). Nothing is forwarded unless
all checks pass.
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, Mapping, Optional
from urllib.parse import parse_qs, urlsplit

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response

from chronicle.core.signing.errors import (
    ClientNotFound,
    GateError,
    SecurityViolation,
    ServerKeyMisuse,
    SignatureInvalid,
)
from chronicle.core.config import is_valid_instance_name
from chronicle.core.signing.keys import keys_equal
from chronicle.core.signing.registry import ClientDirectory
from chronicle.core.signing.request import SignedRequest
from chronicle.core.signing.server_keys import get_server_keyring
from chronicle.core.signing.verify import Ed25519RequestVerifier, RequestVerifier

logger = logging.getLogger(__name__)


CLIENT_IDENTIFIER_HEADER = "Chronicle-Client-Key-ID"

# Request attributes set on success
ATTR_AUTHENTICATED = "authenticated"
ATTR_PUBLIC_KEY = "public_key"

INSTANCE_PARAMETER = "instance"

REJECTION_STATUS = 403

CallNext = Callable[[SignedRequest, Response], Awaitable[Optional[Response]]]
ErrorBuilder = Callable[[Response, str, int], Response]


class DirectoryScope(str, Enum):
    """Which identities a gate will accept."""
    ANY = "any"
    ADMIN_ONLY = "admin_only"

    @property
    def admin_only(self) -> bool:
        return self is DirectoryScope.ADMIN_ONLY


def _server_public_key() -> Ed25519PublicKey:
    return get_server_keyring().public_key


class ClientSignatureGate:
    """
    Signature gate for one directory scope.

    The client gate and the admin gate are both instances of this class;
    they differ only in `scope`.
    """

    def __init__(
        self,
        directory: ClientDirectory,
        build_error: ErrorBuilder,
        verifier: Optional[RequestVerifier] = None,
        server_public_key: Callable[[], Ed25519PublicKey] = _server_public_key,
        scope: DirectoryScope = DirectoryScope.ANY,
        client_header: str = CLIENT_IDENTIFIER_HEADER,
        instances: Optional[Mapping[str, ClientDirectory]] = None,
    ):
        self.directory = directory
        self.build_error = build_error
        self.verifier = verifier or Ed25519RequestVerifier()
        self.server_public_key = server_public_key
        self.scope = DirectoryScope(scope)
        self.client_header = client_header
        self.instances = dict(instances or {})

    def get_client_id(self, request: SignedRequest) -> str:
        """
        Return the client identifier, unmodified.

        Raises:
            ClientNotFound: If the header is absent
            SecurityViolation: If the header appears more than once
        """
        values = request.get_header(self.client_header)
        if not values:
            raise ClientNotFound("No client header provided")
        if len(values) != 1:
            raise SecurityViolation("Only one client header may be provided")
        return values[0]

    def directory_for(self, request: SignedRequest) -> ClientDirectory:
        """
        The directory of the instance named in the query string.

        A missing, repeated, malformed or unconfigured instance name selects
        the default directory.
        """
        if not self.instances:
            return self.directory
        names = parse_qs(urlsplit(request.path).query).get(INSTANCE_PARAMETER, [])
        if len(names) != 1 or not is_valid_instance_name(names[0]):
            return self.directory
        return self.instances.get(names[0], self.directory)

    def get_public_key(self, client_id: str, directory: Optional[ClientDirectory] = None) -> Ed25519PublicKey:
        """
        Resolve the identifier within this gate's scope.

        Raises:
            ClientNotFound: If unknown, or not an admin for the admin gate
        """
        directory = directory if directory is not None else self.directory
        return directory.resolve(client_id, admin_only=self.scope.admin_only)

    def authenticate(self, request: SignedRequest) -> SignedRequest:
        """
        Run every check and return the attributed copy of `request`.

        Raises:
            GateError: On any failure
        """
        client_id = self.get_client_id(request)
        public_key = self.get_public_key(client_id, self.directory_for(request))

        try:
            verified = self.verifier.verify(request, public_key)
            if keys_equal(self.server_public_key(), public_key):
                logger.warning(f"Client '{client_id}' presented the server signing key")
                raise ServerKeyMisuse()
        except GateError:
            raise
        except Exception as e:
            logger.error(
                f"Unexpected error verifying request from '{client_id}': {type(e).__name__}: {e}",
                exc_info=True,
            )
            raise SignatureInvalid() from e

        return (
            verified
            .with_attribute(ATTR_AUTHENTICATED, True)
            .with_attribute(ATTR_PUBLIC_KEY, public_key)
        )

    def reject(self, response: Response, error: GateError) -> Response:
        """The only place a gate failure turns into a response."""
        return self.build_error(response, error.message, REJECTION_STATUS)

    async def __call__(self, request: SignedRequest, response: Response, call_next: CallNext) -> Response:
        """
        Gate one request.

        Args:
            request: Inbound request
            response: The pipeline's seed response
            call_next: Remainder of the pipeline

        Returns:
            The next stage's response, the seed response if the next stage
            returned nothing usable, or a 403 rejection
        """
        try:
            # Directory lookups may hit the database
            verified = await run_in_threadpool(self.authenticate, request)
        except GateError as e:
            logger.warning(
                f"Rejected {request.method} {request.path} ({self.scope.value}): "
                f"{type(e).__name__}: {e.message}"
            )
            return self.reject(response, e)
        except Exception as e:
            logger.error(
                f"Unexpected error authenticating {request.method} {request.path}: {type(e).__name__}: {e}",
                exc_info=True,
            )
            return self.reject(response, SignatureInvalid())

        next_response = await call_next(verified, response)
        if isinstance(next_response, Response):
            return next_response
        return response
