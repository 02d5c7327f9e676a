"""
Converter configuration - loads from environment.

Configuration via: KNIME2SQL_LOG_LEVEL, KNIME2SQL_ALIAS_TEMPLATE,
KNIME2SQL_JOIN_SUFFIX, KNIME2SQL_MAX_UPLOAD_NODES,
KNIME2SQL_API_HOST, KNIME2SQL_API_PORT
"""
import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass
class ConverterSettings:
    """Runtime settings for resolution and SQL generation."""

    log_level: str = field(
        default_factory=lambda: os.environ.get("KNIME2SQL_LOG_LEVEL", "INFO").upper()
    )

    # SQL name given to each node's output; placeholders {id} and {name}
    alias_template: str = field(
        default_factory=lambda: os.environ.get("KNIME2SQL_ALIAS_TEMPLATE", "node_{id}")
    )

    # Duplicate-name suffix for joiner settings that do not declare one
    join_suffix: str = field(
        default_factory=lambda: os.environ.get("KNIME2SQL_JOIN_SUFFIX", " (Right)")
    )

    # API
    max_upload_nodes: int = field(
        default_factory=lambda: _env_int("KNIME2SQL_MAX_UPLOAD_NODES", 2000)
    )
    api_host: str = field(default_factory=lambda: os.environ.get("KNIME2SQL_API_HOST", "127.0.0.1"))
    api_port: int = field(default_factory=lambda: _env_int("KNIME2SQL_API_PORT", 8000))

    def __post_init__(self):
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"Invalid log level: {self.log_level}. "
                f"Expected one of {', '.join(_LOG_LEVELS)}."
            )
        if "{id}" not in self.alias_template and "{name}" not in self.alias_template:
            raise ValueError(
                f"Alias template {self.alias_template!r} must contain {{id}} or {{name}}"
            )
        if self.max_upload_nodes <= 0:
            raise ValueError("max_upload_nodes must be positive")

    def alias_for(self, node_id: int, name: str = "") -> str:
        """SQL name for a node's output."""
        return self.alias_template.format(id=node_id, name=name or f"node_{node_id}")


def configure_logging(settings: ConverterSettings):
    """Configure root logging for the CLI and the API."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
