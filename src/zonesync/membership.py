"""Membership sources: where the resync loop gets the list of network members.

Brief:
  - MemberRecord is the raw, untrusted record handed to the zone builder.
  - StaticMembershipSource serves a fixed list (tests, --once dry runs).
  - CentralClient fetches members from the network-management REST API using
    requests and derives RFC 4193 / 6PLANE addresses when the network enables
    them.
"""

from __future__ import annotations

import logging
import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import requests

from .addresses import rfc4193_address, sixplane_address
from .errors import ConfigError, InvalidAddressError, MembershipError

logger = logging.getLogger(__name__)

DEFAULT_CENTRAL_URL = "https://api.zerotier.com/api/v1"
TOKEN_ENV_VAR = "ZEROTIER_CENTRAL_TOKEN"


@dataclass(frozen=True)
class MemberRecord:
    """Brief: One network member as reported by the membership source.

    Inputs:
      - member_id: 10 hex digit member id.
      - name: Optional user-supplied display name (untrusted).
      - addresses: Assigned addresses, bare or in CIDR notation.
      - authorized: Whether the member is allowed on the network.
    """

    member_id: str
    name: Optional[str] = None
    addresses: Tuple[str, ...] = field(default_factory=tuple)
    authorized: bool = True


class MembershipSource:
    """Interface consumed by ResyncLoop.

    ``skipped`` counts entries the last fetch_members() call left out because
    they were malformed; the resync loop reports them as dropped records.
    """

    skipped: int = 0

    def fetch_members(self) -> List[MemberRecord]:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:
        """Release network resources; called when the resync loop stops."""


class StaticMembershipSource(MembershipSource):
    """Serve a fixed list of members."""

    def __init__(self, records: Iterable[MemberRecord] = ()) -> None:
        self.records: List[MemberRecord] = list(records)

    def fetch_members(self) -> List[MemberRecord]:
        return list(self.records)


def central_token(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> str:
    """Brief: Read the API token from a file or the environment.

    Inputs:
      - path: Optional token file; its stripped contents are the token.
      - environ: Environment mapping (defaults to os.environ).

    Outputs:
      - str: API token.

    Raises:
      - ConfigError when the file cannot be read, is empty, or no token is
        configured at all.
    """

    if path is not None:
        token_path = pathlib.Path(os.path.expanduser(path))
        try:
            token = token_path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigError("cannot read token file %s: %s" % (token_path, exc)) from exc
        if not token:
            raise ConfigError("token file %s is empty" % token_path)
        return token

    env = os.environ if environ is None else environ
    token = (env.get(TOKEN_ENV_VAR) or "").strip()
    if not token:
        raise ConfigError(
            "missing API token: pass a token file or set %s" % TOKEN_ENV_VAR
        )
    return token


class CentralClient(MembershipSource):
    """Fetch network members from the network-management REST API.

    Brief:
      - GET {base_url}/network/{network_id} for the IPv6 assignment modes.
      - GET {base_url}/network/{network_id}/member for the member list.
      - Any transport error, non-2xx status or unexpected JSON shape raises
        MembershipError; the resync loop keeps serving the previous zone.
    """

    def __init__(
        self,
        network_id: str,
        token: str,
        base_url: str = DEFAULT_CENTRAL_URL,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.network_id = network_id.lower()
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": "token %s" % token,
                "Accept": "application/json",
                "User-Agent": "zonesync",
            }
        )

    def _get_json(self, path: str) -> Any:
        url = "%s/%s" % (self.base_url, path.lstrip("/"))
        try:
            resp = self._session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise MembershipError("request to %s failed: %s" % (url, exc)) from exc
        try:
            return resp.json()
        except ValueError as exc:
            raise MembershipError("malformed JSON from %s: %s" % (url, exc)) from exc

    def fetch_v6_modes(self) -> Dict[str, bool]:
        """Brief: Return the network's IPv6 auto-assignment modes.

        Inputs:
          - None.

        Outputs:
          - dict with boolean "rfc4193" and "6plane" keys.
        """

        payload = self._get_json("network/%s" % self.network_id)
        if not isinstance(payload, dict):
            raise MembershipError("malformed network payload: expected an object")
        config = payload.get("config") or {}
        if not isinstance(config, dict):
            raise MembershipError("malformed config in network payload")
        modes = config.get("v6AssignMode") or {}
        if not isinstance(modes, dict):
            raise MembershipError("malformed v6AssignMode in network payload")
        return {
            "rfc4193": bool(modes.get("rfc4193", False)),
            "6plane": bool(modes.get("6plane", False)),
        }

    def fetch_members(self) -> List[MemberRecord]:
        """Brief: Fetch and normalize all members of the network.

        Inputs:
          - None.

        Outputs:
          - list[MemberRecord]; an empty list is valid. Individual malformed
            member entries are logged and left out.

        Raises:
          - MembershipError for an unreachable service or a payload that is
            not a JSON list.
        """

        modes = self.fetch_v6_modes()
        payload = self._get_json("network/%s/member" % self.network_id)
        if not isinstance(payload, list):
            raise MembershipError("malformed member payload: expected a list")

        records: List[MemberRecord] = []
        skipped = 0
        for entry in payload:
            try:
                records.append(self._member_from_json(entry, modes))
            except MembershipError as exc:
                # One malformed entry must not hide the rest of the network.
                skipped += 1
                logger.warning("skipping member entry: %s", exc)
        self.skipped = skipped
        logger.debug(
            "fetched %d members for network %s (%d malformed entries skipped)",
            len(records),
            self.network_id,
            skipped,
        )
        return records

    def _member_from_json(self, entry: Any, modes: Dict[str, bool]) -> MemberRecord:
        if not isinstance(entry, dict):
            raise MembershipError("malformed member entry: %r" % (entry,))

        member_id = entry.get("nodeId")
        if not isinstance(member_id, str):
            raise MembershipError("member entry without nodeId: %r" % (entry,))

        config = entry.get("config") or {}
        if not isinstance(config, dict):
            raise MembershipError("malformed config for member %s" % member_id)

        assigned = config.get("ipAssignments") or []
        if not isinstance(assigned, list):
            raise MembershipError("malformed ipAssignments for member %s" % member_id)

        addresses: List[str] = [str(a) for a in assigned]
        addresses.extend(self._derived_addresses(member_id, modes))

        name = entry.get("name")
        return MemberRecord(
            member_id=member_id,
            name=name if isinstance(name, str) else None,
            addresses=tuple(addresses),
            authorized=bool(config.get("authorized", False)),
        )

    def _derived_addresses(self, member_id: str, modes: Dict[str, bool]) -> Sequence[str]:
        derived: List[str] = []
        try:
            if modes.get("rfc4193"):
                derived.append(str(rfc4193_address(self.network_id, member_id)))
            if modes.get("6plane"):
                derived.append(str(sixplane_address(self.network_id, member_id)))
        except InvalidAddressError as exc:
            # The builder drops members with unusable ids; nothing to derive.
            logger.debug("cannot derive IPv6 addresses for %s: %s", member_id, exc)
        return derived

    def close(self) -> None:
        self._session.close()
