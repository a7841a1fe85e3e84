"""Configuration loading and validation.

Brief:
  - The daemon reads one YAML file and validates it with the pydantic model
    ZoneSyncConfig. CLI flags are applied as overrides before validation so
    that every value goes through the same checks.
  - Invalid domains, missing hosts files and malformed ids are reported as
    ConfigError, which is fatal at startup.

Inputs:
  - YAML config path and/or a mapping of overrides.

Outputs:
  - ZoneSyncConfig instance.
"""

from __future__ import annotations

import os
import re
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, validator

from .errors import ConfigError, HostsFileError
from .hosts import check_hosts_path
from .membership import DEFAULT_CENTRAL_URL
from .names import domain_or_default

_NETWORK_ID_RE = re.compile(r"^[0-9a-fA-F]{16}$")
_MEMBER_ID_RE = re.compile(r"^[0-9a-fA-F]{10}$")


class ListenConfig(BaseModel):
    """Brief: Where the DNS responder binds.

    Inputs:
      - address: Listen address (default 127.0.0.1).
      - port: UDP/TCP port (default 53).
      - tcp: Also serve DNS over TCP (default True).
    """

    address: str = "127.0.0.1"
    port: int = Field(default=53, ge=0, le=65535)
    tcp: bool = True

    class Config:
        extra = "forbid"


class ZoneSyncConfig(BaseModel):
    """Brief: Typed configuration for the zonesync daemon.

    Inputs:
      - network: 16 hex digit network id whose members are published.
      - domain: DNS suffix for all records (default home.arpa).
      - hosts_file: Optional hosts file merged into the zone.
      - watch_hosts_file: Resync as soon as the hosts file changes.
      - wildcard_names: Publish wildcard records (see ZoneBuilder).
      - primary_member_id: This resolver's own member id (wildcard target).
      - token_file: File holding the API token; the environment is used when
        omitted.
      - central_url: Base URL of the network-management API.
      - resync_interval_seconds / backoff_initial_seconds /
        backoff_max_seconds: Resync loop timing.
      - request_timeout_seconds: Per-request HTTP timeout.
      - ttl: TTL for DNS answers.
      - listen: ListenConfig.
      - logging: Mapping passed to init_logging().

    Outputs:
      - ZoneSyncConfig with validated, normalized fields.
    """

    network: str
    domain: Optional[str] = None
    hosts_file: Optional[str] = None
    watch_hosts_file: bool = True
    wildcard_names: bool = False
    primary_member_id: Optional[str] = None
    token_file: Optional[str] = None
    central_url: str = DEFAULT_CENTRAL_URL
    resync_interval_seconds: float = Field(default=30.0, gt=0)
    backoff_initial_seconds: float = Field(default=1.0, gt=0)
    backoff_max_seconds: float = Field(default=60.0, gt=0)
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    ttl: int = Field(default=60, ge=0)
    listen: ListenConfig = Field(default_factory=ListenConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "forbid"

    @validator("network", pre=True)
    def _check_network(cls, v):
        value = str(v or "").strip()
        if not _NETWORK_ID_RE.match(value):
            raise ValueError("network must be 16 hex digits")
        return value.lower()

    @validator("domain")
    def _check_domain(cls, v):
        if v is not None:
            # Raises InvalidDomainError, a ValueError, for bad suffixes.
            domain_or_default(v)
        return v

    @validator("hosts_file")
    def _check_hosts_file(cls, v):
        if v is None:
            return v
        try:
            return str(check_hosts_path(v))
        except HostsFileError as exc:
            raise ValueError(str(exc)) from exc

    @validator("primary_member_id")
    def _check_member_id(cls, v):
        if v is None:
            return v
        if not _MEMBER_ID_RE.match(v):
            raise ValueError("primary_member_id must be 10 hex digits")
        return v.lower()

    @validator("backoff_max_seconds")
    def _check_backoff(cls, v, values):
        initial = values.get("backoff_initial_seconds")
        if initial is not None and v < initial:
            raise ValueError("backoff_max_seconds must be >= backoff_initial_seconds")
        return v


def read_config_file(path: str) -> Dict[str, Any]:
    """Brief: Read a YAML config file into a mapping.

    Inputs:
      - path: YAML file path.

    Outputs:
      - dict (empty for an empty file).

    Raises:
      - ConfigError for unreadable files, YAML syntax errors, or a top level
        that is not a mapping.
    """

    expanded = os.path.expanduser(path)
    try:
        with open(expanded, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError("cannot read config %s: %s" % (expanded, exc)) from exc
    except yaml.YAMLError as exc:
        raise ConfigError("invalid YAML in %s: %s" % (expanded, exc)) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("config %s must contain a mapping at top level" % expanded)
    return data


def load_config(
    path: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None
) -> ZoneSyncConfig:
    """Brief: Load, merge and validate configuration.

    Inputs:
      - path: Optional YAML config file.
      - overrides: Values that replace file values (None values are ignored).

    Outputs:
      - ZoneSyncConfig.

    Raises:
      - ConfigError with the validation details.

    Example:
      >>> load_config(overrides={"network": "8056c2e21c000001"}).domain is None
      True
    """

    data: Dict[str, Any] = read_config_file(path) if path else {}
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key == "listen" and isinstance(value, dict):
            merged = dict(data.get("listen") or {})
            merged.update({k: v for k, v in value.items() if v is not None})
            data["listen"] = merged
        else:
            data[key] = value

    try:
        return ZoneSyncConfig(**data)
    except ValidationError as exc:
        raise ConfigError("invalid configuration: %s" % exc) from exc
