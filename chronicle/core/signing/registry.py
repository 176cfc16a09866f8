"""
Client directories.

A directory turns the identifier from the client header into the Ed25519
public key the request must be signed with. The admin gate asks for
admin-only resolution, so a registered but unprivileged client is
indistinguishable from an unknown one there.

The static directory is read from clients.yaml:

```yaml
clients:
  replica-eu-1:
    description: "Read replica in Frankfurt"
    public_key: "base64-encoded-public-key"
    is_admin: false
    enabled: true
```
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Union

import yaml
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from chronicle.core.paths import get_config_path
from chronicle.core.signing.errors import ClientNotFound
from chronicle.core.signing.keys import base64_to_public_key

logger = logging.getLogger(__name__)

CLIENTS_FILENAME = "clients.yaml"


def _flag(data: Mapping[str, Any], key: str, default: bool) -> bool:
    # YAML "false" (quoted) is a non-empty string; bool() would read it as True
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{what} must be a mapping, got {type(value).__name__}")
    return value


class ClientDirectory(Protocol):
    """Anything that can turn a client identifier into a public key."""

    def resolve(self, client_id: str, admin_only: bool = False) -> Ed25519PublicKey:
        """Raise ClientNotFound when the client is unknown (or not an admin, if admin_only)."""
        ...

    def list_clients(self) -> List[str]:
        ...


@dataclass(frozen=True)
class ClientRecord:
    """One clients.yaml entry, with its key already parsed."""
    client_id: str
    public_key: Ed25519PublicKey
    is_admin: bool = False
    description: str = ""
    enabled: bool = True

    @classmethod
    def from_config(cls, client_id: str, data: Mapping[str, Any]) -> "ClientRecord":
        """
        Raises:
            ValueError: If public_key is missing or malformed, or a flag is not a boolean
        """
        if not isinstance(data, Mapping):
            raise ValueError("entry must be a mapping")
        encoded = data.get("public_key")
        if not encoded:
            raise ValueError("public_key is required")
        return cls(
            client_id=client_id,
            public_key=base64_to_public_key(encoded),
            is_admin=_flag(data, "is_admin", False),
            description=str(data.get("description") or ""),
            enabled=_flag(data, "enabled", True),
        )


class StaticClientRegistry:
    """
    In-memory directory, normally filled from clients.yaml at startup.

    Not modified after loading, so lookups need no locking. Identifiers
    are matched exactly.
    """

    def __init__(self, clients: Optional[Iterable[ClientRecord]] = None):
        self._clients: Dict[str, ClientRecord] = {c.client_id: c for c in clients or ()}
        self._loaded = False

    def load_from_yaml(self, config_path: Union[str, Path]) -> None:
        """
        Replace the registry contents with the clients in `config_path`.

        A missing file leaves the registry empty. Any bad entry aborts the
        whole load.

        Raises:
            ValueError: If the file or one of its entries is malformed
        """
        config_path = Path(config_path)
        if not config_path.exists():
            logger.warning(f"Clients config not found: {config_path}")
            self._clients = {}
            self._loaded = True
            return

        document = _mapping(yaml.safe_load(config_path.read_text()), str(config_path))
        entries = _mapping(document.get("clients"), f"clients in {config_path}")

        clients = {}
        for client_id, data in entries.items():
            client_id = str(client_id)
            try:
                clients[client_id] = ClientRecord.from_config(client_id, data or {})
            except ValueError as e:
                logger.error(f"Client '{client_id}' in {config_path} is invalid: {e}")
                raise ValueError(f"Invalid client config for '{client_id}': {e}") from e

        self._clients = clients
        self._loaded = True
        logger.info(f"Loaded {len(clients)} static clients from {config_path}")

    def get_client(self, client_id: str) -> Optional[ClientRecord]:
        """The enabled client with this identifier, if any."""
        client = self._clients.get(client_id)
        return client if client is not None and client.enabled else None

    def resolve(self, client_id: str, admin_only: bool = False) -> Ed25519PublicKey:
        """
        Raises:
            ClientNotFound: If the client is unknown or disabled, or not an
                            admin while admin_only is set
        """
        client = self.get_client(client_id)
        if client is None or (admin_only and not client.is_admin):
            raise ClientNotFound()
        return client.public_key

    def list_clients(self) -> List[str]:
        return list(self._clients)

    @property
    def is_loaded(self) -> bool:
        return self._loaded


def load_static_clients(config_path: Optional[Union[str, Path]] = None) -> StaticClientRegistry:
    """
    Build a new registry from clients.yaml.

    Args:
        config_path: Explicit file; when None, resolved with get_config_path()

    Returns:
        The registry, empty when no file exists
    """
    registry = StaticClientRegistry()
    if config_path is None:
        config_path = get_config_path(CLIENTS_FILENAME)
    if config_path is None:
        logger.info(f"No {CLIENTS_FILENAME} found - every signed request will be rejected")
        return registry

    registry.load_from_yaml(config_path)
    return registry


def add_client_to_yaml(
    config_path: Union[str, Path],
    client_id: str,
    public_key_b64: str,
    is_admin: bool = False,
    description: str = "",
) -> None:
    """
    Add or replace one entry in a clients.yaml file, keeping the others.

    Raises:
        ValueError: If the public key or the existing file is malformed (the file is not touched)
    """
    base64_to_public_key(public_key_b64)

    config_path = Path(config_path)
    document = {}
    if config_path.exists():
        document = dict(_mapping(yaml.safe_load(config_path.read_text()), str(config_path)))

    clients = dict(_mapping(document.get("clients"), f"clients in {config_path}"))
    clients[client_id] = {
        "description": description,
        "public_key": public_key_b64,
        "is_admin": is_admin,
        "enabled": True,
    }
    document["clients"] = clients

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(yaml.safe_dump(document, sort_keys=True))
    logger.info(f"Registered client '{client_id}' (admin={is_admin}) in {config_path}")
