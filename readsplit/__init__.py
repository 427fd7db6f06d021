"""Read/write splitting client for PostgreSQL."""

from __future__ import annotations

from .infrastructure.postgres import Client, ClientConfig, Database, DatabaseConfig, Result
from .logger import LoggingConfig, configure_logging, get_logger

__all__ = [
    "Client",
    "ClientConfig",
    "Database",
    "DatabaseConfig",
    "LoggingConfig",
    "Result",
    "configure_logging",
    "get_logger",
]
