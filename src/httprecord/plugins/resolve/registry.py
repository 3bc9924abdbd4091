"""Resolve the plugin names used in config files to plugin classes.

A plugin entry names its class either by alias ("http_records") or by dotted
import path ("httprecord.plugins.resolve.http_records.HttpRecords"). Aliases
come from @plugin_aliases plus the lowercased class name of every BasePlugin
subclass defined in a module of PLUGIN_PACKAGE.
"""

import importlib
import logging
import pkgutil
from types import ModuleType
from typing import Dict, Iterator, Optional, Type

from .base import BasePlugin

logger = logging.getLogger(__name__)

PLUGIN_PACKAGE = "httprecord.plugins.resolve"


def _alias_key(alias: str) -> str:
    return alias.strip().lower().replace("-", "_")


def _is_plugin_class(value: object) -> bool:
    return (
        isinstance(value, type)
        and issubclass(value, BasePlugin)
        and value is not BasePlugin
    )


def _plugins_defined_in(module: ModuleType) -> Iterator[Type[BasePlugin]]:
    for value in vars(module).values():
        if _is_plugin_class(value) and value.__module__ == module.__name__:
            yield value


def discover_plugins(package_name: str = PLUGIN_PACKAGE) -> Dict[str, Type[BasePlugin]]:
    """
    Brief: Import each module of package_name and index its plugin classes.

    Inputs:
      - package_name: Package whose modules are scanned (not recursive).

    Outputs:
      - dict mapping alias keys to plugin classes.

    Raises:
      - ImportError: a plugin module failed to import.
      - ValueError: two classes claim the same alias.

    Example:
        >>> discover_plugins()["http_records"].__name__
        'HttpRecords'
    """
    package = importlib.import_module(package_name)
    found: Dict[str, Type[BasePlugin]] = {}

    for info in pkgutil.iter_modules(package.__path__, package.__name__ + "."):
        try:
            module = importlib.import_module(info.name)
        except ImportError:
            logger.error("Failed importing plugin module %s", info.name)
            raise

        for cls in _plugins_defined_in(module):
            keys = {_alias_key(alias) for alias in cls.get_aliases()}
            keys.add(cls.__name__.lower())
            for key in keys:
                owner = found.setdefault(key, cls)
                if owner is not cls:
                    raise ValueError(
                        f"Plugin alias '{key}' is claimed by both "
                        f"{owner.__module__}.{owner.__name__} and "
                        f"{cls.__module__}.{cls.__name__}"
                    )

    logger.debug("Discovered plugin aliases: %s", ", ".join(sorted(found)))
    return found


def get_plugin_class(
    identifier: str, registry: Optional[Dict[str, Type[BasePlugin]]] = None
) -> Type[BasePlugin]:
    """
    Brief: Look up the plugin class for a config "module" value.

    Inputs:
      - identifier: Alias, or a dotted path when it contains a dot.
      - registry: Result of discover_plugins(); discovered on demand when None.

    Outputs:
      - The plugin class.

    Raises:
      - KeyError: unknown alias.
      - TypeError: a dotted path that does not name a BasePlugin subclass.
    """
    ident = identifier.strip()
    if "." in ident:
        module_name, _, class_name = ident.rpartition(".")
        cls = getattr(importlib.import_module(module_name), class_name, None)
        if not _is_plugin_class(cls):
            raise TypeError(f"{identifier} is not a plugin class")
        return cls

    known = registry if registry is not None else discover_plugins()
    try:
        return known[_alias_key(ident)]
    except KeyError:
        raise KeyError(
            f"Unknown plugin '{identifier}'; known plugins: {', '.join(sorted(known))}"
        ) from None
