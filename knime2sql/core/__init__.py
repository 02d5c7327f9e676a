"""Core: configuration and error handling."""
from knime2sql.core.config import ConverterSettings, configure_logging
from knime2sql.core.errors import (
    ConverterError,
    DeclarationError,
    Diagnostic,
    DiagnosticLog,
    ErrorCode,
    ErrorContext,
    GenerationError,
    InvariantViolation,
    SettingsError,
    Severity,
)

__all__ = [
    "ConverterSettings",
    "configure_logging",
    "ConverterError",
    "DeclarationError",
    "Diagnostic",
    "DiagnosticLog",
    "ErrorCode",
    "ErrorContext",
    "GenerationError",
    "InvariantViolation",
    "SettingsError",
    "Severity",
]
