from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}

DEFAULT_FORMAT = "%(asctime)s %(level_tag)s %(name)s: %(message)s"


def _level_tag(levelno: int) -> str:
    return _TAGS.get(levelno, f"[lvl{levelno}]")


class SyslogFormatter(logging.Formatter):
    """Formatter for syslog output without timestamps (syslog adds its own)."""

    def __init__(self, tag: Optional[str] = None) -> None:
        super().__init__()
        self.tag = tag

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        text = f"{record.level_tag} {record.name}: {record.getMessage()}"
        if self.tag:
            return f"{self.tag}: {text}"
        return text


class BracketLevelFormatter(logging.Formatter):
    """Formatter that adds bracketed lowercase level tags and UTC timestamps."""

    def formatTime(self, record, datefmt=None):
        """Format the record's creation time as UTC ISO-8601 with Z suffix."""
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return created.strftime(datefmt or "%Y-%m-%dT%H:%M:%SZ")

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return super().format(record)


def _syslog_handler(syslog_cfg: Any) -> logging.Handler:
    if isinstance(syslog_cfg, dict):
        address = syslog_cfg.get("address", "/dev/log")
        if isinstance(address, (list, tuple)):
            address = (str(address[0]), int(address[1]))
        facility = getattr(
            logging.handlers.SysLogHandler,
            f"LOG_{str(syslog_cfg.get('facility', 'USER')).upper()}",
            logging.handlers.SysLogHandler.LOG_USER,
        )
        tag = syslog_cfg.get("tag", "httprecord")
    else:
        address = "/dev/log"
        facility = logging.handlers.SysLogHandler.LOG_USER
        tag = "httprecord"

    handler = logging.handlers.SysLogHandler(address=address, facility=facility)
    handler.setFormatter(SyslogFormatter(tag=tag))
    return handler


def parse_level(value: Any) -> int:
    """Map a config level name onto a logging level, defaulting to INFO."""
    return _LEVELS.get(str(value or "info").lower(), logging.INFO)


def build_handlers(cfg: Dict[str, Any], warn_logger: logging.Logger) -> List[logging.Handler]:
    """
    Brief: Create the handlers described by a logging config block.

    Inputs:
      - cfg: Mapping with optional stderr, file and syslog keys.
      - warn_logger: Logger that receives a warning when syslog is unavailable.

    Outputs:
      - list[logging.Handler] sharing one BracketLevelFormatter; the syslog
        handler uses SyslogFormatter. OSError from creating the log file
        propagates.
    """
    formatter = BracketLevelFormatter(fmt=DEFAULT_FORMAT)
    handlers: List[logging.Handler] = []

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        handlers.append(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            handlers.append(_syslog_handler(syslog_cfg))
        except (OSError, ValueError) as e:
            warn_logger.warning("Failed to configure syslog: %s", e)

    return handlers


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """
    Initialize root logging from the "logging" block of the config file.

    Args:
        cfg: Logging configuration dictionary with optional keys:
            - level: debug, info, warn, error, crit (default: info)
            - stderr: boolean to log to stderr (default: True)
            - file: path to a log file (optional)
            - syslog: boolean or dict enabling syslog; a dict may carry
                - address: Unix socket path (default /dev/log) or [host, port]
                - facility: syslog facility name (default USER)
                - tag: program identifier prepended to messages

    Example config:
        {
            "level": "debug",
            "file": "./var/httprecord.log",
            "syslog": {"address": "/dev/log", "tag": "httprecord"},
        }
    """
    cfg = cfg or {}

    root = logging.getLogger()
    root.setLevel(parse_level(cfg.get("level")))
    for h in list(root.handlers):
        root.removeHandler(h)

    for handler in build_handlers(cfg, root):
        root.addHandler(handler)

    logging.captureWarnings(True)
