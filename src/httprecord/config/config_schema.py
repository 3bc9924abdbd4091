"""JSON Schema-based validation for the httprecord YAML configuration.

Plugin-specific settings are validated separately by each plugin's pydantic
model; this schema covers the root document and the shape of plugin entries.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator

logger = logging.getLogger(__name__)

_LOGGING_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "level": {
            "type": "string",
            "enum": ["debug", "info", "warn", "warning", "error", "crit", "critical"],
        },
        "stderr": {"type": "boolean"},
        "file": {"type": ["string", "null"]},
        "syslog": {"type": ["boolean", "object"]},
    },
    "additionalProperties": False,
}

_PLUGIN_ENTRY_SCHEMA: Dict[str, Any] = {
    "oneOf": [
        {"type": "string", "minLength": 1},
        {
            "type": "object",
            "properties": {
                "module": {"type": "string", "minLength": 1},
                "name": {"type": "string"},
                "enabled": {"type": "boolean"},
                "comment": {"type": "string"},
                "pre_priority": {"type": "integer"},
                "setup_priority": {"type": "integer"},
                "priority": {"type": "integer"},
                "config": {"type": ["object", "null"]},
            },
            "required": ["module"],
            "additionalProperties": False,
        },
    ]
}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "httprecord configuration",
    "type": "object",
    "properties": {
        "listen": {
            "type": "object",
            "properties": {
                "host": {"type": "string"},
                "port": {"type": "integer", "minimum": 1, "maximum": 65535},
            },
            "additionalProperties": False,
        },
        "upstreams": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "host": {"type": "string"},
                    "port": {"type": "integer", "minimum": 1, "maximum": 65535},
                },
                "required": ["host"],
                "additionalProperties": False,
            },
        },
        "timeout_ms": {"type": "integer", "minimum": 1},
        "logging": _LOGGING_SCHEMA,
        "plugins": {"type": "array", "items": _PLUGIN_ENTRY_SCHEMA},
    },
    "additionalProperties": False,
}


def _format_errors(errors: List[Any], config_path: Optional[str] = None) -> str:
    """Brief: Render jsonschema errors as a single human-readable message.

    Inputs:
      - errors: jsonschema ValidationError instances.
      - config_path: Optional path of the file being validated.

    Outputs:
      - str: Multi-line message, one error per line.
    """

    where = f" in {config_path}" if config_path else ""
    lines = [f"Invalid configuration{where}:"]
    for err in errors:
        location = "/".join(str(p) for p in err.path) or "<root>"
        lines.append(f"  - {location}: {err.message}")
    return "\n".join(lines)


def validate_config(cfg: Dict[str, Any], config_path: Optional[str] = None) -> None:
    """Brief: Validate a parsed configuration mapping against CONFIG_SCHEMA.

    Inputs:
      - cfg: Parsed YAML mapping.
      - config_path: Optional path used in error messages.

    Outputs:
      - None.

    Raises:
      - ValueError: Listing every schema violation.
    """

    validator = Draft202012Validator(CONFIG_SCHEMA)
    errors = sorted(validator.iter_errors(cfg), key=lambda e: list(e.path))
    if errors:
        raise ValueError(_format_errors(errors, config_path=config_path))
    logger.debug("configuration %s passed schema validation", config_path or "<dict>")
