"""Core infrastructure: config, store client, logging, middleware, exceptions."""

from app.core.config import Settings, get_settings
from app.core.elasticsearch import close_client, get_client
from app.core.logging import get_logger, request_id_ctx

__all__ = [
    "Settings",
    "close_client",
    "get_client",
    "get_logger",
    "get_settings",
    "request_id_ctx",
]
