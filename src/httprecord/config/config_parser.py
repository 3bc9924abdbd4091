"""Configuration parsing and normalization helpers for httprecord.

Brief:
  This module contains the configuration-parsing utilities used by the CLI
  entrypoint. It centralizes:
    - reading and schema-validating YAML config files
    - normalizing listener and upstream settings
    - loading resolve plugins from config plugin specs

Inputs:
  - YAML config dicts and paths

Outputs:
  - Normalized config dicts and constructed plugin instances
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..plugins.resolve.base import BasePlugin
from ..plugins.resolve.registry import discover_plugins, get_plugin_class
from .config_schema import validate_config

DEFAULT_LISTEN_HOST = "127.0.0.1"
DEFAULT_LISTEN_PORT = 5353
DEFAULT_TIMEOUT_MS = 2000


def parse_config_file(config_path: str) -> Dict[str, Any]:
    """Brief: Read and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.

    Outputs:
      - dict: Parsed configuration mapping.

    Raises:
      - ValueError: When the root is not a mapping or schema validation fails.
    """

    with open(config_path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")

    validate_config(cfg, config_path=config_path)
    return cfg


def normalize_listen_config(cfg: Dict[str, Any]) -> Tuple[str, int]:
    """Brief: Return the (host, port) the UDP listener binds to."""

    listen = cfg.get("listen") or {}
    host = str(listen.get("host", DEFAULT_LISTEN_HOST))
    port = int(listen.get("port", DEFAULT_LISTEN_PORT))
    return host, port


def normalize_upstream_config(
    cfg: Dict[str, Any],
) -> Tuple[List[Dict[str, Any]], int]:
    """Brief: Normalize upstream configuration to endpoints + timeout.

    Inputs:
      - cfg: dict containing parsed YAML. Supports:
        - cfg['upstreams'] as an optional list of {'host', 'port'} entries
        - cfg['timeout_ms'] for the per-upstream timeout.

    Outputs:
      - (upstreams, timeout_ms):
        - upstreams: list[dict] with keys {'host': str, 'port': int}; empty
          when no upstreams are configured.
        - timeout_ms: int timeout in milliseconds applied per upstream attempt.

    Raises:
      - ValueError: For invalid types or missing required fields.
    """

    upstream_raw = cfg.get("upstreams") or []
    if not isinstance(upstream_raw, list):
        raise ValueError("config.upstreams must be a list of upstream definitions")

    upstreams: List[Dict[str, Any]] = []
    for u in upstream_raw:
        if not isinstance(u, dict):
            raise ValueError("each upstream entry must be a mapping")
        if "host" not in u:
            raise ValueError("each upstream entry must include 'host'")
        upstreams.append({"host": str(u["host"]), "port": int(u.get("port", 53))})

    try:
        timeout_ms = int(cfg.get("timeout_ms", DEFAULT_TIMEOUT_MS))
    except (TypeError, ValueError):
        timeout_ms = DEFAULT_TIMEOUT_MS

    return upstreams, timeout_ms


def _validate_plugin_config(plugin_cls: type[BasePlugin], config: dict | None) -> dict:
    """Brief: Validate and normalize plugin configuration via the plugin's model.

    Inputs:
      - plugin_cls: Plugin class (subclass of BasePlugin).
      - config: Raw config mapping for this plugin (may be None).

    Outputs:
      - dict: Validated/normalized config mapping to be passed into plugin_cls.

    Notes:
      - The optional "logging" sub-config is a BasePlugin-level option and is
        preserved verbatim across validation.
    """

    cfg: dict = dict(config or {})
    logging_cfg = cfg.pop("logging", None)

    model_cls = plugin_cls.get_config_model()
    if model_cls is None:
        validated = cfg
    else:
        try:
            validated = dict(model_cls(**cfg).model_dump())
        except Exception as exc:
            raise ValueError(
                f"Invalid configuration for plugin {plugin_cls.__name__}: {exc}"
            ) from exc

    if logging_cfg is not None:
        validated["logging"] = logging_cfg
    return validated


def load_plugins(plugin_specs: Optional[List[Any]]) -> List[BasePlugin]:
    """Brief: Load and initialize plugins from config plugin specifications.

    Inputs:
      - plugin_specs: List of plugin specs. Each item is either:
        - str: a dotted module path or short alias, or
        - dict: plugin entry mapping supporting:
          - module: dotted path or alias
          - name: optional friendly plugin label
          - config: plugin-specific configuration mapping
          - enabled: bool (default True). When false, the plugin is skipped.
          - pre_priority/setup_priority, or priority for both

    Outputs:
      - list[BasePlugin]: Initialized plugin instances.

    Raises:
      - ValueError: On duplicate names or invalid plugin configuration.
      - KeyError: On unknown plugin aliases.
    """

    alias_registry = discover_plugins()
    plugins: List[BasePlugin] = []
    seen_names: set[str] = set()

    for spec in plugin_specs or []:
        if isinstance(spec, str):
            spec = {"module": spec}
        if not isinstance(spec, dict):
            continue

        module_path = spec.get("module")
        if not module_path:
            continue
        if not bool(spec.get("enabled", True)):
            continue

        effective_name = str(spec.get("name") or module_path).strip()
        if effective_name in seen_names:
            raise ValueError(
                "Duplicate plugin name '%s'. Each plugin must have a unique name; "
                "set 'name' explicitly in plugins[] to disambiguate." % effective_name
            )
        seen_names.add(effective_name)

        raw_config = spec.get("config") or {}
        plugin_cls = get_plugin_class(str(module_path), alias_registry)
        validated_config = _validate_plugin_config(plugin_cls, raw_config)

        generic_priority = spec.get("priority")
        for key in ("pre_priority", "setup_priority"):
            value = spec.get(key, generic_priority)
            if value is not None:
                validated_config[key] = value

        plugins.append(plugin_cls(name=effective_name, **validated_config))

    return plugins
