"""
Structured Error Handling for the KNIME to SQL converter.

Provides:
- Error codes
- Exception hierarchy for declaration, generation and invariant failures
- Diagnostic records for problems that do not abort a conversion
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """Standardized error codes."""
    # Declaration errors (1xxx)
    DECLARATION_INVALID = "E1001"
    DECLARATION_NODE_INVALID = "E1002"
    DECLARATION_CONNECTION_INVALID = "E1003"

    # Graph structure errors (2xxx)
    GRAPH_CYCLE = "E2001"
    GRAPH_DANGLING_EDGE = "E2002"
    GRAPH_DUPLICATE_NODE = "E2003"
    GRAPH_ALIAS_COLLISION = "E2004"

    # Resolution errors (3xxx)
    RESOLUTION_NO_PREDECESSOR = "E3001"
    RESOLUTION_AMBIGUOUS_PORT = "E3002"
    RESOLUTION_MISSING_JOIN_INPUT = "E3003"
    RESOLUTION_UPSTREAM_UNRESOLVED = "E3004"
    RESOLUTION_EXTRA_PREDECESSOR = "E3005"

    # Settings errors (4xxx)
    SETTINGS_MISSING = "E4001"
    SETTINGS_INVALID = "E4002"

    # Generation errors (5xxx)
    GENERATION_FAILED = "E5001"
    GENERATION_UNSUPPORTED = "E5002"

    # Internal
    INVARIANT_VIOLATION = "E9001"
    UNKNOWN = "E9999"


class Severity(str, Enum):
    """How bad a diagnostic is."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class ErrorContext:
    """Captured context when error occurred."""
    node_id: Optional[int] = None
    node_name: Optional[str] = None
    node_factory: Optional[str] = None
    additional: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        if self.node_id is not None:
            result["node_id"] = self.node_id
        if self.node_name:
            result["node_name"] = self.node_name
        if self.node_factory:
            result["node_factory"] = self.node_factory
        if self.additional:
            result.update(self.additional)
        return result


class ConverterError(Exception):
    """Base exception for all converter errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
        suggestion: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context or ErrorContext()
        self.cause = cause
        self.recoverable = recoverable
        self.suggestion = suggestion
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "suggestion": self.suggestion,
            "context": self.context.to_dict(),
            "timestamp": self.timestamp.isoformat()
        }

    def __str__(self):
        return f"[{self.code.value}] {self.message}"


class DeclarationError(ConverterError):
    """Malformed workflow declaration (nodes / connections input)."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.DECLARATION_INVALID,
        context: Optional[ErrorContext] = None,
        **kwargs
    ):
        super().__init__(
            message=message,
            code=code,
            context=context,
            suggestion="Verify the workflow declaration has 'nodes' and 'connections' lists",
            **kwargs
        )


class SettingsError(ConverterError):
    """A setting needed to compute a node's columns is missing or malformed."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SETTINGS_MISSING,
        context: Optional[ErrorContext] = None,
        **kwargs
    ):
        super().__init__(
            message=message,
            code=code,
            context=context,
            recoverable=True,
            suggestion="Re-save the node configuration in KNIME and export again",
            **kwargs
        )


class GenerationError(ConverterError):
    """Error while turning a resolved node into SQL."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.GENERATION_FAILED,
        context: Optional[ErrorContext] = None,
        **kwargs
    ):
        super().__init__(
            message=message,
            code=code,
            context=context,
            recoverable=True,
            suggestion="Check node configuration; other nodes are still converted",
            **kwargs
        )


class InvariantViolation(ConverterError):
    """Internal bug: a resolver invariant does not hold."""

    def __init__(self, message: str, context: Optional[ErrorContext] = None, **kwargs):
        super().__init__(
            message=message,
            code=ErrorCode.INVARIANT_VIOLATION,
            context=context,
            **kwargs
        )


@dataclass
class Diagnostic:
    """A non-fatal problem found while building or resolving a workflow."""
    code: ErrorCode
    message: str
    severity: Severity = Severity.WARNING
    node_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code.value,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.node_id is not None:
            result["node_id"] = self.node_id
        return result


class DiagnosticLog:
    """
    Collects diagnostics for one conversion run.

    Every entry is also logged, at the level matching its severity.
    """

    def __init__(self):
        self._diagnostics: List[Diagnostic] = []

    def add(
        self,
        code: ErrorCode,
        message: str,
        severity: Severity = Severity.WARNING,
        node_id: Optional[int] = None,
    ) -> Diagnostic:
        diagnostic = Diagnostic(code=code, message=message, severity=severity, node_id=node_id)
        self._diagnostics.append(diagnostic)

        if severity == Severity.ERROR:
            logger.error(f"[{code.value}] {message}")
        elif severity == Severity.WARNING:
            logger.warning(f"[{code.value}] {message}")
        else:
            logger.info(f"[{code.value}] {message}")
        return diagnostic

    def error(self, code: ErrorCode, message: str, node_id: Optional[int] = None) -> Diagnostic:
        return self.add(code, message, Severity.ERROR, node_id)

    def warning(self, code: ErrorCode, message: str, node_id: Optional[int] = None) -> Diagnostic:
        return self.add(code, message, Severity.WARNING, node_id)

    def extend(self, diagnostics: List[Diagnostic]):
        self._diagnostics.extend(diagnostics)

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return list(self._diagnostics)

    def has_errors(self) -> bool:
        return any(d.severity == Severity.ERROR for d in self._diagnostics)

    def summary(self) -> Dict[str, Any]:
        """Get diagnostic summary."""
        return {
            "error_count": sum(1 for d in self._diagnostics if d.severity == Severity.ERROR),
            "warning_count": sum(1 for d in self._diagnostics if d.severity == Severity.WARNING),
            "codes": sorted(set(d.code.value for d in self._diagnostics)),
        }
