"""Client directory persistence"""
from .models import Base, ChronicleClient, client_table_name, get_client_table
from .connection import init_db, get_session_factory
from .directory import DatabaseClientDirectory

__all__ = [
    'Base',
    'ChronicleClient',
    'client_table_name',
    'get_client_table',
    'init_db',
    'get_session_factory',
    'DatabaseClientDirectory',
]
