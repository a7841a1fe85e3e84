from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

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


def _level_tag(levelno: int) -> str:
    return _TAGS.get(levelno, f"[lvl{levelno}]")


class SyslogFormatter(logging.Formatter):
    """Syslog lines: no timestamp (syslog adds its own), program tag prefix."""

    def __init__(self, tag: str = "zonesync") -> None:
        super().__init__()
        self.tag = tag

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return f"{self.tag}: {record.level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """Adds bracketed lowercase level tags and UTC ISO-8601 timestamps."""

    def formatTime(self, record, datefmt=None):
        return datetime.fromtimestamp(record.created, timezone.utc).strftime(
            "%Y-%m-%dT%H:%M:%SZ"
        )

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return super().format(record)


def parse_level(value: Any) -> int:
    """Map "debug"/"info"/"warn"/... (any case) to a logging level, default INFO."""
    return _LEVELS.get(str(value or "info").lower(), logging.INFO)


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """
    Configure the root logger for the daemon.

    Args:
        cfg: Logging configuration with optional keys:
            - level: debug, info, warn, error, crit (default: info)
            - stderr: log to stderr (default: True)
            - file: path of a log file to append to
            - syslog: True for defaults, or a dict with address, facility
              and tag (default tag: zonesync)

    Example config:
        {"level": "debug", "file": "/var/log/zonesync.log", "syslog": True}
    """
    cfg = cfg or {}

    root = logging.getLogger()
    root.setLevel(parse_level(cfg.get("level")))

    for h in list(root.handlers):
        root.removeHandler(h)

    formatter = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        opts = syslog_cfg if isinstance(syslog_cfg, dict) else {}
        address = opts.get("address", "/dev/log")
        if isinstance(address, (list, tuple)):
            address = (str(address[0]), int(address[1]))
        facility = getattr(
            logging.handlers.SysLogHandler,
            f"LOG_{str(opts.get('facility', 'daemon')).upper()}",
            logging.handlers.SysLogHandler.LOG_DAEMON,
        )
        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=address, facility=facility
            )
        except OSError as e:  # pragma: no cover - depends on the host having syslog
            root.warning(f"Failed to configure syslog: {e}")
        else:
            syslog_handler.setFormatter(SyslogFormatter(tag=str(opts.get("tag", "zonesync"))))
            root.addHandler(syslog_handler)

    logging.captureWarnings(True)
