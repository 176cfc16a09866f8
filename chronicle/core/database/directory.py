"""
Database-backed client directory.

Resolves client identifiers against the chronicle_clients table, or against
an instance's chronicle_<prefix>_clients table. One short-lived session per
lookup, so the directory is safe to share between request threads.
"""
import logging
from typing import List, Optional

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from sqlalchemy import Row, delete, insert, select
from sqlalchemy.orm import sessionmaker

from chronicle.core.database.models import get_client_table
from chronicle.core.signing.errors import ClientNotFound
from chronicle.core.signing.keys import base64_to_public_key

logger = logging.getLogger(__name__)


class DatabaseClientDirectory:
    """Client directory stored in SQL."""

    def __init__(self, session_factory: sessionmaker, table_prefix: Optional[str] = None):
        self._session_factory = session_factory
        self.table_prefix = table_prefix
        self.table = get_client_table(table_prefix)

    def for_prefix(self, table_prefix: str) -> "DatabaseClientDirectory":
        """
        A directory over another instance's table in the same database.

        The table is created if missing.
        """
        directory = DatabaseClientDirectory(self._session_factory, table_prefix=table_prefix)
        directory.create_table()
        return directory

    def create_table(self) -> None:
        with self._session_factory() as session:
            self.table.create(session.get_bind(), checkfirst=True)

    def resolve(self, client_id: str, admin_only: bool = False) -> Ed25519PublicKey:
        """
        Resolve a client identifier to its public key.

        Raises:
            ClientNotFound: If no row matches (or the row is not an admin while admin_only is set)
        """
        t = self.table
        stmt = select(t.c.publickey).where(t.c.publicid == client_id)
        if admin_only:
            stmt = stmt.where(t.c.isadmin.is_(True))

        with self._session_factory() as session:
            publickey = session.execute(stmt).scalar_one_or_none()

        if publickey is None:
            raise ClientNotFound()

        try:
            return base64_to_public_key(publickey)
        except ValueError as e:
            # A corrupt row must not authenticate anyone
            logger.error(f"Stored public key for client '{client_id}' in {t.name} is invalid: {e}")
            raise ClientNotFound() from e

    def register_client(
        self,
        client_id: str,
        public_key_b64: str,
        is_admin: bool = False,
        comment: Optional[str] = None,
    ) -> Row:
        """
        Add a client.

        Returns:
            The stored row

        Raises:
            ValueError: If the key is invalid or the client already exists
        """
        base64_to_public_key(public_key_b64)
        t = self.table

        with self._session_factory() as session:
            exists = session.execute(select(t.c.id).where(t.c.publicid == client_id)).first()
            if exists:
                raise ValueError(f"Client '{client_id}' already exists")

            session.execute(insert(t).values(
                publicid=client_id,
                publickey=public_key_b64,
                isadmin=is_admin,
                comment=comment,
            ))
            session.commit()
            client = session.execute(select(t).where(t.c.publicid == client_id)).one()

        logger.info(f"Registered client '{client_id}' in {t.name} (admin={is_admin})")
        return client

    def revoke_client(self, client_id: str) -> bool:
        """Delete a client. Returns False if it did not exist."""
        t = self.table
        with self._session_factory() as session:
            result = session.execute(delete(t).where(t.c.publicid == client_id))
            session.commit()

        if not result.rowcount:
            return False
        logger.info(f"Revoked client '{client_id}' from {t.name}")
        return True

    def list_clients(self) -> List[str]:
        t = self.table
        with self._session_factory() as session:
            return list(session.execute(select(t.c.publicid).order_by(t.c.publicid)).scalars())
