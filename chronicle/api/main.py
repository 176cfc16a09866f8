"""
FastAPI application for the Chronicle signature gate.

Run with:
    uvicorn chronicle.api.main:create_app --factory
"""
from fastapi import FastAPI, Request as FastAPIRequest
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from typing import Dict, Optional
import logging
import os
import uuid

from chronicle import __version__
from chronicle.api.errors import build_error_response
from chronicle.api.gate import ClientSignatureGate, DirectoryScope
from chronicle.api.middleware import ClientSignatureMiddleware
from chronicle.api.routes import admin, client
from chronicle.core.config import Settings, get_settings
from chronicle.core.signing.registry import ClientDirectory, load_static_clients
from chronicle.core.signing.server_keys import (
    ServerKeyring,
    load_server_keyring,
    set_server_keyring,
)
from chronicle.core.signing.verify import Ed25519RequestVerifier, NonceCache

logger = logging.getLogger(__name__)
error_logger = logging.getLogger("api.errors")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        return response


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=settings.log_format,
    )


def build_directory(settings: Settings) -> ClientDirectory:
    """
    Pick the client directory: SQL when DATABASE_URL is set, clients.yaml otherwise.
    """
    if settings.database_url:
        from chronicle.core.database import DatabaseClientDirectory, init_db
        session_factory = init_db(settings.database_url)
        logger.info("Using database client directory")
        return DatabaseClientDirectory(session_factory)

    registry = load_static_clients(settings.clients_config_path)
    logger.info(f"Using static client directory ({len(registry.list_clients())} clients)")
    return registry


def build_instance_directories(settings: Settings, directory: ClientDirectory) -> Dict[str, ClientDirectory]:
    """
    One directory per configured instance, over its own client table.

    Instances need the database directory; with clients.yaml they are ignored.
    """
    if not settings.instances:
        return {}
    for_prefix = getattr(directory, "for_prefix", None)
    if for_prefix is None:
        logger.warning("INSTANCES is set but the client directory is not a database; ignoring instances")
        return {}
    instances = {name: for_prefix(prefix) for name, prefix in settings.instances.items()}
    logger.info(f"Instances: {', '.join(sorted(instances))}")
    return instances


def build_gate(
    settings: Settings,
    directory: ClientDirectory,
    scope: DirectoryScope,
    instances: Optional[Dict[str, ClientDirectory]] = None,
) -> ClientSignatureGate:
    # One nonce cache per gate: a path guarded by two gates is verified twice
    nonce_cache = None
    if settings.nonce_replay_protection:
        nonce_cache = NonceCache(ttl_seconds=2 * settings.timestamp_tolerance_seconds)

    return ClientSignatureGate(
        directory=directory,
        build_error=build_error_response,
        verifier=Ed25519RequestVerifier(
            tolerance_seconds=settings.timestamp_tolerance_seconds,
            nonce_cache=nonce_cache,
        ),
        scope=scope,
        client_header=settings.client_header_name,
        instances=instances,
    )


def create_app(
    settings: Optional[Settings] = None,
    directory: Optional[ClientDirectory] = None,
    keyring: Optional[ServerKeyring] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Defaults to get_settings()
        directory: Client directory; built from settings when omitted
        keyring: Server signing key; loaded from settings when omitted
    """
    settings = settings or get_settings()
    configure_logging(settings)

    if keyring is None:
        keyring = load_server_keyring(
            settings.server_signing_key_path,
            autogenerate=settings.server_key_autogenerate,
        )
    set_server_keyring(keyring)

    if directory is None:
        directory = build_directory(settings)

    app = FastAPI(
        title="Chronicle API",
        description="Signed-request gate for the Chronicle record store",
        version=__version__,
    )
    app.state.settings = settings
    instances = build_instance_directories(settings, directory)
    app.state.instances = instances
    app.state.directory = directory

    @app.exception_handler(Exception)
    async def global_exception_handler(request: FastAPIRequest, exc: Exception):
        """
        Log detailed errors internally but return a generic message to clients.
        """
        error_id = str(uuid.uuid4())
        error_logger.error(
            f"Error {error_id}: {type(exc).__name__}: {exc}",
            exc_info=True,
            extra={
                "error_id": error_id,
                "path": request.url.path,
                "method": request.method,
            }
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "An internal error occurred", "error_id": error_id},
        )

    # Signature gates (innermost, added first)
    app.add_middleware(
        ClientSignatureMiddleware,
        gate=build_gate(settings, directory, DirectoryScope.ADMIN_ONLY, instances),
        path_prefix=settings.admin_path_prefix,
        max_body_bytes=settings.max_request_body_bytes,
    )
    app.add_middleware(
        ClientSignatureMiddleware,
        gate=build_gate(settings, directory, DirectoryScope.ANY, instances),
        path_prefix=settings.client_path_prefix,
        max_body_bytes=settings.max_request_body_bytes,
    )
    # Security headers middleware (outermost)
    app.add_middleware(SecurityHeadersMiddleware)

    app.include_router(client.router, prefix=settings.client_path_prefix)
    app.include_router(admin.router, prefix=settings.admin_path_prefix)

    @app.get("/health")
    async def health_check():
        """Health check endpoint (no auth required)"""
        return {"status": "healthy", "version": __version__}

    logger.info(
        f"Chronicle API ready (client gate: {settings.client_path_prefix}, "
        f"admin gate: {settings.admin_path_prefix})"
    )
    return app


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)
