"""Exception hierarchy shared by the zonesync modules.

Brief:
  - Per-record input rejections (names, domains, addresses) subclass
    ValueError so callers that only care about "bad input" can catch that.
  - Cycle-level failures (membership fetch, hosts file, zone build) are
    reported by the resync loop and never terminate the process.
  - ConfigError and HostsFileError raised during startup are process-fatal.
"""

from __future__ import annotations


class ZoneSyncError(Exception):
    """Base class for every error raised by zonesync."""


class ConfigError(ZoneSyncError):
    """Invalid or missing configuration detected at startup."""


class InvalidDomainError(ZoneSyncError, ValueError):
    """A configured domain suffix is not a valid DNS name."""


class InvalidNameError(ZoneSyncError, ValueError):
    """A name token cannot be turned into a valid fully-qualified name."""


class InvalidAddressError(ZoneSyncError, ValueError):
    """An address (optionally in CIDR notation) cannot be parsed."""


class HostsFileError(ZoneSyncError):
    """A hosts file that was explicitly configured cannot be read."""


class MembershipError(ZoneSyncError):
    """The membership source is unreachable or returned malformed data."""


class ZoneBuildError(ZoneSyncError):
    """An internal invariant was violated while merging records."""
