"""FastAPI dependency injection providers."""

from fastapi import Request

from scmsync.errors.exceptions import ConfigurationError
from scmsync.scanning.connections import ConnectionRegistry
from scmsync.scanning.service import GitScannerService


def get_scanner_service(request: Request) -> GitScannerService:
    return request.app.state.scanner_service


def get_connection_registry(request: Request) -> ConnectionRegistry:
    registry = getattr(request.app.state, "connection_registry", None)
    if registry is None:
        raise ConfigurationError("No connection registry configured (set SCMSYNC_CONNECTIONS_FILE)")
    return registry
