"""
SQLAlchemy Database Models

Stores:
- Chronicle clients (identifier, Ed25519 public key, admin flag)

Each configured instance keeps its clients in its own table,
chronicle_<prefix>_clients, with the same columns as chronicle_clients.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, MetaData, Table, Text
from sqlalchemy.orm import declarative_base
from datetime import datetime
from typing import Optional

from chronicle.core.config import is_valid_instance_name

Base = declarative_base()

CLIENT_TABLE = "chronicle_clients"


def client_table_name(prefix: Optional[str] = None) -> str:
    """
    Table name for an instance's table prefix; the default table when no prefix is given.

    Raises:
        ValueError: If the prefix is not a valid instance name
    """
    if not prefix:
        return CLIENT_TABLE
    if not is_valid_instance_name(prefix):
        raise ValueError(f"Invalid table prefix: {prefix!r}")
    return f"chronicle_{prefix}_clients"


def build_client_table(metadata: MetaData, name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("publicid", String(128), nullable=False, unique=True, index=True),  # Client-Key-ID header value
        Column("publickey", String(64), nullable=False),  # base64 raw Ed25519 key
        Column("isadmin", Boolean, nullable=False, default=False),
        Column("comment", Text),
        Column("created", DateTime, default=datetime.utcnow, nullable=False),
        Column("modified", DateTime, default=datetime.utcnow, onupdate=datetime.utcnow),
    )


class ChronicleClient(Base):
    """
    A client allowed to send signed requests.

    The gate only reads this table; rows are written by provisioning.
    """
    __table__ = build_client_table(Base.metadata, CLIENT_TABLE)

    def __repr__(self):
        return f"<ChronicleClient {self.publicid} admin={self.isadmin}>"


def get_client_table(prefix: Optional[str] = None) -> Table:
    """Client table for a prefix, added to Base.metadata on first use."""
    name = client_table_name(prefix)
    table = Base.metadata.tables.get(name)
    if table is None:
        table = build_client_table(Base.metadata, name)
    return table
