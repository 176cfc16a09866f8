"""
Chronicle API signature gate.

Verifies Ed25519-signed client requests before they reach the record store.
"""

__version__ = "1.0.0"
