"""
Brief: Tests for zonesync.logging_config.init_logging and formatters.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import logging.handlers
from pathlib import Path

import pytest

from zonesync.logging_config import (
    BracketLevelFormatter,
    SyslogFormatter,
    init_logging,
    parse_level,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """
    Brief: Put the root logger back the way pytest configured it.

    Inputs:
      - None

    Outputs:
      - None
    """
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            if hasattr(h, "close"):
                h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)
    logging.captureWarnings(False)


@pytest.mark.parametrize(
    "value,level",
    [
        ("debug", logging.DEBUG),
        ("WARN", logging.WARNING),
        ("crit", logging.CRITICAL),
        (None, logging.INFO),
        ("nonsense", logging.INFO),
    ],
)
def test_parse_level(value, level):
    assert parse_level(value) == level


def test_init_logging_adds_stderr_handler():
    """
    Brief: init_logging configures root logger with stderr handler by default.

    Inputs:
      - cfg: minimal dict with level

    Outputs:
      - None: Asserts StreamHandler present and level applied
    """
    init_logging({"level": "debug"})
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(type(h) is logging.StreamHandler for h in root.handlers)


def test_init_logging_without_stderr():
    init_logging({"stderr": False})
    assert logging.getLogger().handlers == []


def test_init_logging_file_handler_writes(tmp_path):
    """
    Brief: init_logging creates the log directory and writes formatted entries.

    Inputs:
      - cfg: file path and level

    Outputs:
      - None: Asserts file created and contains message
    """
    log_path = tmp_path / "logs" / "zonesync.log"
    init_logging({"level": "info", "file": str(log_path), "stderr": False})
    logging.getLogger("zonesync.test").info("file message")
    logging.getLogger("zonesync.test").debug("hidden")
    for h in logging.getLogger().handlers:
        h.flush()
    content = Path(log_path).read_text()
    assert "file message" in content
    assert "[info] zonesync.test:" in content
    assert "hidden" not in content


def test_init_logging_syslog_success(monkeypatch):
    """
    Brief: init_logging attaches a syslog handler when configured.

    Inputs:
      - syslog: True or dict

    Outputs:
      - None: Asserts dummy handler receives address, facility and tag
    """
    created = {}

    class DummySysLogHandler(logging.Handler):
        LOG_DAEMON = 3
        LOG_LOCAL0 = 16

        def __init__(self, address=None, facility=None):
            super().__init__()
            created["address"] = address
            created["facility"] = facility

        def setFormatter(self, fmt):
            created["formatter"] = fmt

        def emit(self, record):
            pass

    monkeypatch.setattr(logging.handlers, "SysLogHandler", DummySysLogHandler)

    init_logging({"syslog": True, "stderr": False})
    assert created["address"] == "/dev/log"
    assert created["facility"] == DummySysLogHandler.LOG_DAEMON
    assert created["formatter"].tag == "zonesync"

    created.clear()
    init_logging(
        {
            "stderr": False,
            "syslog": {"address": ["localhost", "514"], "facility": "local0", "tag": "zt-dns"},
        }
    )
    assert created["address"] == ("localhost", 514)
    assert created["facility"] == DummySysLogHandler.LOG_LOCAL0
    assert created["formatter"].tag == "zt-dns"


def test_init_logging_syslog_failure_warns(monkeypatch):
    """
    Brief: init_logging logs a warning if syslog handler setup fails.

    Inputs:
      - monkeypatch: make SysLogHandler raise OSError

    Outputs:
      - None: Asserts warning emitted
    """

    class FailingSysLogHandler:
        LOG_DAEMON = 3

        def __init__(self, *a, **kw):
            raise OSError("no syslog")

    monkeypatch.setattr(logging.handlers, "SysLogHandler", FailingSysLogHandler)

    caught = {"msg": None}
    root = logging.getLogger()

    def fake_warning(msg, *args, **kwargs):
        caught["msg"] = msg % args if args else str(msg)

    monkeypatch.setattr(root, "warning", fake_warning)

    init_logging({"syslog": True, "stderr": False})
    assert caught["msg"] and "Failed to configure syslog" in caught["msg"]


def test_formatters_produce_expected_tags():
    """
    Brief: BracketLevelFormatter and SyslogFormatter include bracketed tags.

    Inputs:
      - LogRecord instances at different levels

    Outputs:
      - None: Asserts formatted strings contain expected tags
    """
    fmt = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")
    rec = logging.LogRecord("n", logging.ERROR, __file__, 1, "m", (), None)
    rec.created = 0.0
    out = fmt.format(rec)
    assert out == "1970-01-01T00:00:00Z [error] n: m"

    s = SyslogFormatter()
    rec2 = logging.LogRecord("n2", logging.WARNING, __file__, 2, "m2", (), None)
    assert s.format(rec2) == "zonesync: [warn] n2: m2"

    rec3 = logging.LogRecord("n3", 5, __file__, 3, "m3", (), None)
    assert SyslogFormatter(tag="x").format(rec3) == "x: [lvl5] n3: m3"
