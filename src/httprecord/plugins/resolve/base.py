from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import ClassVar, Dict, Optional, Sequence, Union, final

from dnslib import QTYPE

from httprecord.config.logging_config import build_handlers, parse_level

logger = logging.getLogger(__name__)


@dataclass
class PluginDecision:
    """
    Brief: Represents a decision made by a plugin.

    Inputs:
      - action: str indicating the decision ("override" or "drop").
      - response: Optional[bytes] DNS response to use when action == "override".
      - plugin_label: Optional[str] name of the plugin instance that decided,
        used for logging.

    Outputs:
      - PluginDecision instance with attributes populated.
    """

    action: str
    response: Optional[bytes] = None
    plugin_label: Optional[str] = None


class PluginContext:
    """Brief: Context passed to plugins while a query is being resolved.

    Inputs:
      - client_ip: str IP address of the requesting client.

    Outputs:
      - PluginContext instance with fields initialized.

    Example use:
        >>> from httprecord.plugins.resolve.base import PluginContext
        >>> ctx = PluginContext(client_ip="192.0.2.1")
        >>> ctx.client_ip
        '192.0.2.1'
    """

    @final
    def __init__(self, client_ip: str) -> None:
        self.client_ip = client_ip
        self.qname: Optional[str] = None


class BasePlugin:
    """Brief: Base class for all resolve plugins.

    Plugins run in ascending pre_priority order; setup() hooks run in
    ascending setup_priority order before listeners start.

    Inputs:
      - name: Optional human-friendly identifier used when logging. When
        omitted, the first alias or the class name is used.
      - **config: Plugin configuration including optional pre_priority,
        setup_priority, target_qtypes and a per-plugin logging block.

    Outputs:
      - Initialized plugin instance.

    Example use:
        >>> from httprecord.plugins.resolve.base import BasePlugin
        >>> class MyPlugin(BasePlugin):
        ...     def pre_resolve(self, qname, qtype, req, ctx):
        ...         return None
        >>> plugin = MyPlugin(name="mine", pre_priority=25)
        >>> plugin.pre_priority
        25
        >>> plugin.name
        'mine'
    """

    pre_priority: ClassVar[int] = 100
    setup_priority: ClassVar[int] = 100
    aliases: ClassVar[Sequence[str]] = ()

    # Plugins may restrict the qtypes they run for; "*" targets all qtypes.
    target_qtypes: ClassVar[Sequence[str]] = ("*",)

    @classmethod
    def get_aliases(cls) -> Sequence[str]:
        return tuple(getattr(cls, "aliases", ()))

    @classmethod
    def get_config_model(cls):
        """Return a pydantic model used to validate configuration, or None."""
        return None

    def __init__(self, name: Optional[str] = None, **config: object) -> None:
        if name is not None:
            self.name = str(name)
        else:
            aliases = list(self.get_aliases())
            self.name = str(aliases[0]) if aliases else self.__class__.__name__

        self.config = config
        logger.debug("loading %s", self)

        self.logger = logging.getLogger(getattr(self.__class__, "__module__", __name__))
        plugin_logging_cfg = config.get("logging")
        if isinstance(plugin_logging_cfg, dict):
            self._init_instance_logger(plugin_logging_cfg)

        self.pre_priority = self._parse_priority_value(
            config.get("pre_priority", self.__class__.pre_priority),
            "pre_priority",
            logger,
        )
        # Setup priority falls back to pre_priority from config, then the
        # class default.
        raw_setup = config.get(
            "setup_priority",
            config.get("pre_priority", getattr(self.__class__, "setup_priority", 100)),
        )
        self.setup_priority = self._parse_priority_value(
            raw_setup, "setup_priority", logger
        )

        raw_qtypes_cfg = config.get(
            "target_qtypes", getattr(self.__class__, "target_qtypes", ("*",))
        )
        self._target_qtypes = self._normalize_qtype_list(raw_qtypes_cfg)

    def _init_instance_logger(self, logging_cfg: Dict[str, object]) -> None:
        """Brief: Configure an optional per-plugin logger from a logging config block.

        Inputs:
          - logging_cfg: Mapping with the same options as the root "logging"
            config (level, stderr, file, syslog).

        Outputs:
          - None; attaches a configured logger to self.logger.
        """

        cfg: Dict[str, object] = dict(logging_cfg)
        logger_name = getattr(self.__class__, "__module__", __name__)
        plugin_logger = logging.getLogger(str(logger_name))

        plugin_logger.setLevel(parse_level(cfg.get("level")))

        for handler in list(plugin_logger.handlers):
            plugin_logger.removeHandler(handler)

        try:
            handlers = build_handlers(cfg, plugin_logger)
        except OSError as exc:
            plugin_logger.warning(
                "Failed to configure file logging for plugin %s: %s", self.name, exc
            )
            handlers = build_handlers(dict(cfg, file=None), plugin_logger)
        for handler in handlers:
            plugin_logger.addHandler(handler)

        plugin_logger.propagate = False
        self.logger = plugin_logger

    @staticmethod
    def _normalize_qtype_list(raw: object) -> list[str]:
        """Brief: Normalize a raw target_qtypes value into uppercase qtype names.

        Inputs:
          - raw: None, a single string, or a list/tuple of mnemonics or "*".

        Outputs:
          - list[str]: Uppercase names, or ["*"] when all qtypes are targeted.
        """

        if raw is None:
            return ["*"]
        if isinstance(raw, str):
            entries = [raw]
        elif isinstance(raw, (list, tuple)):
            entries = [str(x) for x in raw]
        else:
            logger.warning(
                "BasePlugin: ignoring invalid target_qtypes value %r (expected str or list)",
                raw,
            )
            return ["*"]

        normalized: list[str] = []
        for entry in entries:
            text = str(entry).strip()
            if not text:
                continue
            if text == "*":
                return ["*"]
            normalized.append(text.upper())
        return normalized or ["*"]

    @staticmethod
    def _parse_priority_value(value: object, key: str, logger: logging.Logger) -> int:
        """Brief: Parse and clamp a priority value to the inclusive range [1, 255].

        Inputs:
          - value: Priority value (int, str, or other).
          - key: Config key name for logging (e.g., "pre_priority").
          - logger: Logger instance for warnings.

        Outputs:
          - int: Clamped priority; 100 on invalid input.

        Example:
            >>> BasePlugin._parse_priority_value("25", "pre_priority", logger)
            25
            >>> BasePlugin._parse_priority_value(300, "pre_priority", logger)
            255
        """

        default = 100
        try:
            val = int(value)  # type: ignore[arg-type]
        except (ValueError, TypeError):
            logger.warning("Invalid %s %r; using default %d", key, value, default)
            return default
        if val < 1:
            logger.warning("%s below 1; clamping to 1", key)
            return 1
        if val > 255:
            logger.warning("%s above 255; clamping to 255", key)
            return 255
        return val

    def targets_qtype(self, qtype: Union[int, str]) -> bool:
        """Brief: Determine whether this plugin runs for the given DNS qtype.

        Inputs:
          - qtype: DNS RR type, as an integer code or mnemonic string.

        Outputs:
          - bool: True when target_qtypes contains "*" or the qtype name.
        """

        qtypes = list(getattr(self, "_target_qtypes", ["*"]))
        if not qtypes or "*" in qtypes:
            return True
        return self.qtype_name(qtype) in qtypes

    @staticmethod
    def qtype_name(qtype: Union[int, str]) -> str:
        if isinstance(qtype, int):
            return str(QTYPE.get(qtype, str(qtype))).upper()
        return str(qtype).upper()

    def pre_resolve(
        self, qname: str, qtype: int, req: bytes, ctx: PluginContext
    ) -> Optional[PluginDecision]:
        """Brief: Hook that runs before the query is forwarded upstream.

        Inputs:
          - qname: The queried domain name.
          - qtype: The query type.
          - req: The raw DNS request.
          - ctx: The plugin context.

        Outputs:
          - PluginDecision to answer or drop the query, or None to pass it to
            the next handler (default).

        Example use:
            >>> plugin = BasePlugin()
            >>> plugin.pre_resolve("example.com", 1, b"", PluginContext("127.0.0.1")) is None
            True
        """

        return None

    def setup(self) -> None:
        """Run one-time initialization before listeners start; no-op by default."""
        return None

    def close(self) -> None:
        """Release resources held by the plugin; no-op by default."""
        return None


def plugin_aliases(*aliases: str):
    """Brief: Decorator to set aliases on a plugin class for registry discovery.

    Inputs:
      - *aliases: Variable number of alias strings for the plugin.

    Outputs:
      - Callable that applies the aliases to a plugin class and returns it.

    Example:
        >>> @plugin_aliases("http", "httprecord")
        ... class Http(BasePlugin):
        ...     pass
        >>> Http.aliases
        ('http', 'httprecord')
    """

    def _wrap(cls: type) -> type:
        cls.aliases = tuple(aliases)
        return cls

    return _wrap
