"""Validated XML connection configs and session-backed error reporting."""

from __future__ import annotations

from .connections import (
    ConnectionBackendError,
    ConnectionHandle,
    build_dsn,
    connect_to_database,
    extract_connection_config,
)
from .files import check_file_exists, file_exists
from .models import ConnectionConfig, ErrorReport
from .reporting import ErrorReporter, ReportedFailure, fail
from .validation import validate_xml

__all__ = [
    "ConnectionBackendError",
    "ConnectionConfig",
    "ConnectionHandle",
    "ErrorReport",
    "ErrorReporter",
    "ReportedFailure",
    "build_dsn",
    "check_file_exists",
    "connect_to_database",
    "extract_connection_config",
    "fail",
    "file_exists",
    "validate_xml",
]
