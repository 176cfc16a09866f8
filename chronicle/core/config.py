"""
Gate settings.

Read from environment variables (case-insensitive) and an optional .env file
in the working directory. Every field has a default suitable for local use.
"""
import re
from typing import Dict, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator

# Instance names and table prefixes end up inside SQL table names
INSTANCE_NAME_PATTERN = re.compile(r"[A-Za-z0-9_\-]+")


def is_valid_instance_name(name) -> bool:
    return isinstance(name, str) and INSTANCE_NAME_PATTERN.fullmatch(name) is not None


class Settings(BaseSettings):
    """Settings for the signature gates, the client directory and the server key."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ============================================================
    # Client Identity
    # ============================================================
    client_header_name: str = Field(
        "Chronicle-Client-Key-ID",
        description="Header carrying the client identifier"
    )
    clients_config_path: Optional[str] = Field(
        None,
        description="Path to clients.yaml (defaults to CONFIG_DIR/clients.yaml)"
    )
    database_url: Optional[str] = Field(
        None,
        description="SQLAlchemy URL of the client directory; overrides clients.yaml when set"
    )
    instances: Dict[str, str] = Field(
        default_factory=dict,
        description='Instance name to client table prefix, as JSON (e.g. {"eu": "eu"}); database directory only'
    )

    # ============================================================
    # Server Signing Key
    # ============================================================
    server_signing_key_path: str = Field(
        "local/server.key",
        description="PEM file holding the server's Ed25519 signing key"
    )
    server_key_autogenerate: bool = Field(
        True,
        description="Generate and save a server keypair if the key file is missing"
    )

    # ============================================================
    # Request Verification
    # ============================================================
    timestamp_tolerance_seconds: int = Field(300, description="Allowed clock skew for X-Timestamp")
    nonce_replay_protection: bool = Field(True, description="Reject reused X-Nonce values")
    max_request_body_bytes: int = Field(
        10 * 1024 * 1024,
        description="Largest body a gated request may carry; bodies are buffered for hashing"
    )

    # ============================================================
    # Routing
    # ============================================================
    client_path_prefix: str = Field("/chronicle/client", description="Paths guarded by the client gate")
    admin_path_prefix: str = Field("/chronicle/admin", description="Paths guarded by the admin gate")
    api_version: str = Field("1.0.0", description="Version reported in response envelopes")

    # ============================================================
    # Logging Configuration
    # ============================================================
    log_level: str = Field("INFO", description="Logging level (DEBUG/INFO/WARNING/ERROR)")
    log_format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string"
    )

    @field_validator("client_path_prefix", "admin_path_prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        v = "/" + (v or "").strip().strip("/")
        return v

    @field_validator("timestamp_tolerance_seconds")
    @classmethod
    def positive_tolerance(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("timestamp_tolerance_seconds must be positive")
        return v

    @field_validator("instances")
    @classmethod
    def validate_instances(cls, v: Dict[str, str]) -> Dict[str, str]:
        for name, prefix in v.items():
            if not is_valid_instance_name(name):
                raise ValueError(f"Invalid instance name: {name!r}")
            if not is_valid_instance_name(prefix):
                raise ValueError(f"Invalid table prefix for instance {name!r}: {prefix!r}")
        return v

    @field_validator("database_url")
    @classmethod
    def normalize_database_url(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        # Some hosting platforms still hand out postgres:// URLs
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql://", 1)
        return v


# Process-wide instance, created on first use
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the shared Settings, creating it from the environment on first call."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Discard the shared Settings and read the environment again."""
    global _settings
    _settings = Settings()
    return _settings
