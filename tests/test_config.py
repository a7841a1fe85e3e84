"""
Brief: Tests for zonesync.config YAML loading, overrides and validation.

Inputs:
  - None

Outputs:
  - None
"""

import pytest

from zonesync.config import ZoneSyncConfig, load_config, read_config_file
from zonesync.errors import ConfigError
from zonesync.membership import DEFAULT_CENTRAL_URL

NETWORK = "8056C2E21C000001"


def _write(tmp_path, text, name="zonesync.yaml"):
    path = tmp_path / name
    path.write_text(text)
    return str(path)


def test_load_config_from_yaml(tmp_path):
    """
    Brief: A YAML file populates and normalizes the model.

    Inputs:
      - tmp_path: temporary directory

    Outputs:
      - None: Asserts parsed values and defaults
    """
    hosts = tmp_path / "hosts"
    hosts.write_text("127.0.0.1 localhost\n")
    path = _write(
        tmp_path,
        "network: %s\n"
        "domain: zombocom\n"
        "hosts_file: %s\n"
        "wildcard_names: true\n"
        "primary_member_id: ABCDEF0123\n"
        "listen:\n"
        "  address: 0.0.0.0\n"
        "  port: 5353\n"
        "logging:\n"
        "  level: debug\n" % (NETWORK, hosts),
    )

    cfg = load_config(path)

    assert cfg.network == NETWORK.lower()
    assert cfg.domain == "zombocom"
    assert cfg.hosts_file == str(hosts)
    assert cfg.wildcard_names is True
    assert cfg.primary_member_id == "abcdef0123"
    assert cfg.listen.address == "0.0.0.0"
    assert cfg.listen.port == 5353
    assert cfg.listen.tcp is True
    assert cfg.logging == {"level": "debug"}
    assert cfg.central_url == DEFAULT_CENTRAL_URL
    assert cfg.resync_interval_seconds == 30.0
    assert cfg.ttl == 60


def test_overrides_replace_file_values(tmp_path):
    """
    Brief: Non-None overrides win; listen overrides merge per field.

    Inputs:
      - tmp_path: temporary directory

    Outputs:
      - None: Asserts merged values
    """
    path = _write(
        tmp_path,
        "network: %s\ndomain: zombocom\nlisten:\n  address: 10.0.0.1\n  port: 5353\n" % NETWORK,
    )
    cfg = load_config(
        path,
        overrides={"domain": "other", "wildcard_names": None, "listen": {"port": 53, "address": None}},
    )
    assert cfg.domain == "other"
    assert cfg.wildcard_names is False
    assert cfg.listen.address == "10.0.0.1"
    assert cfg.listen.port == 53


def test_overrides_without_file():
    cfg = load_config(overrides={"network": NETWORK})
    assert cfg.domain is None
    assert cfg.hosts_file is None


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"network": "short"},
        {"network": NETWORK, "domain": "bad."},
        {"network": NETWORK, "domain": "~"},
        {"network": NETWORK, "hosts_file": "/definitely/not/here"},
        {"network": NETWORK, "primary_member_id": "xyz"},
        {"network": NETWORK, "backoff_initial_seconds": 10, "backoff_max_seconds": 5},
        {"network": NETWORK, "resync_interval_seconds": 0},
        {"network": NETWORK, "listen": {"port": 70000}},
        {"network": NETWORK, "unknown_key": 1},
    ],
)
def test_invalid_config_raises_config_error(data):
    """
    Brief: Every validation failure surfaces as ConfigError.

    Inputs:
      - data: invalid override mapping

    Outputs:
      - None: Asserts ConfigError
    """
    with pytest.raises(ConfigError):
        load_config(overrides=data)


def test_hosts_file_directory_rejected(tmp_path):
    with pytest.raises(ConfigError):
        load_config(overrides={"network": NETWORK, "hosts_file": str(tmp_path)})


def test_read_config_file_errors(tmp_path):
    """
    Brief: Missing files, bad YAML and non-mapping documents are rejected.

    Inputs:
      - tmp_path: temporary directory

    Outputs:
      - None: Asserts ConfigError and empty-file handling
    """
    with pytest.raises(ConfigError):
        read_config_file(str(tmp_path / "missing.yaml"))
    with pytest.raises(ConfigError):
        read_config_file(_write(tmp_path, "network: [unclosed\n", "bad.yaml"))
    with pytest.raises(ConfigError):
        read_config_file(_write(tmp_path, "- a\n- b\n", "list.yaml"))
    assert read_config_file(_write(tmp_path, "", "empty.yaml")) == {}


def test_model_direct_construction():
    cfg = ZoneSyncConfig(network=NETWORK)
    assert cfg.network == NETWORK.lower()
    assert cfg.watch_hosts_file is True
