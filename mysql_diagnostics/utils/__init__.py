"""工具模块"""

from .exceptions import (
    DiagnosticsError, ConfigError, CatalogError, DuplicateProbeError,
    ProbeTimeoutError, ProbeExecutionError, ConnectionExhaustedError,
    SchemaMismatchError
)
from .log_manager import LogManager, LogLevel, get_logger, configure_logging, log_manager

__all__ = [
    'DiagnosticsError', 'ConfigError', 'CatalogError', 'DuplicateProbeError',
    'ProbeTimeoutError', 'ProbeExecutionError', 'ConnectionExhaustedError',
    'SchemaMismatchError',
    'LogManager', 'LogLevel', 'get_logger', 'configure_logging', 'log_manager'
]
