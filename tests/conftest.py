"""
Brief: Global pytest configuration: src/ on sys.path, per-test timeout and
shared zone fixtures.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'zonesync' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

HOSTS_DIR = os.path.join(os.path.dirname(__file__), "testdata", "hosts-files")


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        # Fallback: no-op on platforms without SIGALRM
        yield


@pytest.fixture
def domain():
    """
    Brief: Validated "zombocom" domain used across zone tests.

    Inputs:
      - None

    Outputs:
      - DNSLabel for zombocom.
    """
    from zonesync.names import domain_or_default

    return domain_or_default("zombocom")


@pytest.fixture
def hosts_dir():
    """
    Brief: Directory of sample hosts files shared by hosts-file tests.

    Inputs:
      - None

    Outputs:
      - str path.
    """
    return HOSTS_DIR
