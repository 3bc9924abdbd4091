from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import List

from .config.config_parser import (
    load_plugins,
    normalize_listen_config,
    normalize_upstream_config,
    parse_config_file,
)
from .config.logging_config import init_logging
from .plugins.resolve.base import BasePlugin
from .servers.server import DNSServer


def _is_setup_plugin(plugin: BasePlugin) -> bool:
    """
    Determine whether a plugin overrides BasePlugin.setup and should
    participate in the setup phase.

    Inputs:
      - plugin: BasePlugin instance.
    Outputs:
      - bool: True if the plugin defines its own setup() implementation.
    """
    return plugin.__class__.setup is not BasePlugin.setup


def run_setup_plugins(plugins: List[BasePlugin]) -> None:
    """
    Run setup() on all setup-aware plugins in ascending setup_priority order.

    Inputs:
      - plugins: List[BasePlugin] instances, typically from load_plugins().
    Outputs:
      - None; raises RuntimeError if a setup hook fails.

    Example use:
      >>> run_setup_plugins([])  # no-op when there are no setup plugins
    """
    logger = logging.getLogger("httprecord.main.setup")
    entries = [p for p in plugins or [] if _is_setup_plugin(p)]
    # Stable sort; list order is preserved for equal priorities
    entries.sort(key=lambda p: int(getattr(p, "setup_priority", 100)))

    for plugin in entries:
        logger.info(
            "Running setup for plugin %s (setup_priority=%d)",
            plugin.name,
            plugin.setup_priority,
        )
        try:
            plugin.setup()
        except Exception as e:
            logger.error("Setup for plugin %s failed: %s", plugin.name, e, exc_info=True)
            raise RuntimeError(f"Setup for plugin {plugin.name} failed") from e


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the DNS server.
    Parses arguments, loads configuration, initializes plugins, and serves
    UDP queries until SIGINT or SIGTERM.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 on clean shutdown, 1 on startup failure, 2 when
        terminated by a signal.

    Example use:
        CLI:
            httprecord --config config/config.yaml
    """
    parser = argparse.ArgumentParser(
        description="DNS server answering TXT/A/AAAA records from HTTP endpoints"
    )
    parser.add_argument(
        "--config", default="config/config.yaml", help="Path to YAML config"
    )
    args = parser.parse_args(argv)

    try:
        cfg = parse_config_file(args.config)
    except (OSError, ValueError) as exc:
        print(str(exc))
        return 1

    # Initialize logging before any other operations
    init_logging(cfg.get("logging"))
    logger = logging.getLogger("httprecord.main")
    logger.info("Loaded config from %s", args.config)

    host, port = normalize_listen_config(cfg)
    upstreams, timeout_ms = normalize_upstream_config(cfg)

    try:
        plugins = load_plugins(cfg.get("plugins", []))
    except (KeyError, TypeError, ValueError) as e:
        logger.error("Failed to load plugins: %s", e)
        return 1
    logger.info("Loaded %d plugins: %s", len(plugins), [p.name for p in plugins])

    try:
        run_setup_plugins(plugins)
    except RuntimeError as e:
        logger.error("Plugin setup failed: %s", e)
        return 1

    try:
        server = DNSServer(host, port, upstreams, plugins, timeout_ms=timeout_ms)
    except OSError as e:
        logger.error("Failed to bind UDP listener on %s:%d: %s", host, port, e)
        return 1

    upstream_info = ", ".join(f"{u['host']}:{u['port']}" for u in upstreams)
    logger.info("Upstreams: [%s], timeout: %dms", upstream_info, timeout_ms)

    exit_code = 0
    shutdown_event = threading.Event()

    def _request_shutdown(reason: str, code: int) -> None:
        nonlocal exit_code
        if shutdown_event.is_set():
            return
        exit_code = code
        shutdown_event.set()
        logger.info("Received %s, initiating shutdown (exit code=%d)", reason, code)

    def _sigterm_handler(_signum, _frame):
        _request_shutdown("SIGTERM", 2)

    def _sigint_handler(_signum, _frame):
        _request_shutdown("SIGINT", 2)

    for sig, handler in (
        (signal.SIGTERM, _sigterm_handler),
        (signal.SIGINT, _sigint_handler),
    ):
        try:
            signal.signal(sig, handler)
        except ValueError:  # pragma: no cover - not on the main thread
            logger.warning("Could not install %s handler", sig.name)

    udp_thread = threading.Thread(
        target=server.serve_forever, name="httprecord-udp", daemon=True
    )
    logger.info("Starting UDP listener on %s:%d", host, port)
    udp_thread.start()
    logger.info("Startup Completed")

    try:
        while not shutdown_event.is_set():
            if not udp_thread.is_alive():
                logger.error("UDP listener exited unexpectedly")
                exit_code = 1
                break
            shutdown_event.wait(1.0)
    finally:
        server.stop()
        udp_thread.join(timeout=5.0)
        for p in plugins:
            try:
                p.close()
            except Exception:
                logger.exception("Error while closing plugin %s", p.name)

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
