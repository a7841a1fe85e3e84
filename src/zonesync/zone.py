"""Zone snapshots: building them from both record sources and serving lookups.

Brief:
  - ZoneBuilder merges membership records and hosts-file records into one
    immutable ZoneSnapshot (forward name -> addresses and reverse
    address -> names).
  - ZoneStore holds the live snapshot. Readers grab the current reference
    once and do all their work against it; publish() swaps the reference in a
    single assignment, so a lookup never sees a mix of two snapshots.

Precedence when both sources mention the same name or address: membership
values first, then hosts-file values, duplicates removed. A name claimed by
both sources therefore resolves to the union of their addresses.
"""

from __future__ import annotations

import dataclasses
import ipaddress
import json
import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from dnslib import DNSLabel

from .addresses import IPAddress, parse_ip_from_cidr
from .errors import InvalidAddressError, InvalidNameError, ZoneBuildError
from .hosts import HostsMapping
from .membership import MemberRecord
from .names import (
    WILDCARD_LABEL,
    as_name,
    domain_to_text,
    is_subdomain,
    member_id_name,
    parse_member_name,
    wildcard_name,
)

logger = logging.getLogger(__name__)

_WILDCARD = WILDCARD_LABEL.encode("ascii")

ForwardMap = Mapping[DNSLabel, Tuple[IPAddress, ...]]
ReverseMap = Mapping[IPAddress, Tuple[DNSLabel, ...]]


@dataclass(frozen=True, eq=False)
class ZoneSnapshot:
    """One immutable, internally consistent version of the zone.

    ``forward`` and ``reverse`` are read-only mapping proxies over
    insertion-ordered dicts. ``nonterminals`` holds the names that exist without
    records of their own: the domain apex and every ancestor of a forward name.
    ``generation`` is stamped by ZoneStore.publish() and is 0 for snapshots
    that have not been published.
    """

    domain: DNSLabel
    forward: ForwardMap
    reverse: ReverseMap
    generation: int = 0
    nonterminals: FrozenSet[DNSLabel] = frozenset()

    @classmethod
    def empty(cls, domain: DNSLabel) -> "ZoneSnapshot":
        return cls(
            domain,
            MappingProxyType({}),
            MappingProxyType({}),
            nonterminals=frozenset([domain]),
        )

    def __len__(self) -> int:
        return len(self.forward)

    def name_exists(self, name: Union[str, DNSLabel]) -> bool:
        """True when ``name`` owns records or is an empty non-terminal (or the apex)."""
        qname = as_name(name)
        return qname in self.forward or qname in self.nonterminals

    def lookup_forward(self, name: Union[str, DNSLabel]) -> Optional[Tuple[IPAddress, ...]]:
        """Brief: Resolve a name to its ordered addresses.

        Inputs:
          - name: DNSLabel or presentation-form text.

        Outputs:
          - Tuple of addresses, or None when the name has no address records.

        Notes:
          - Exact matches win. A name that exists without records (the apex or
            an empty non-terminal) never matches a wildcard.
          - Otherwise the wildcard of the closest existing ancestor answers;
            the walk stops at that ancestor whether or not it has a wildcard.
        """

        qname = as_name(name)
        found = self.forward.get(qname)
        if found is not None:
            return found

        if not is_subdomain(qname, self.domain) or qname in self.nonterminals:
            return None

        labels = qname.label
        stop = len(labels) - len(self.domain.label)
        for i in range(1, stop + 1):
            parent = DNSLabel(labels[i:])
            found = self.forward.get(DNSLabel((_WILDCARD,) + labels[i:]))
            if found is not None:
                return found
            if self.name_exists(parent):
                return None
        return None

    def lookup_reverse(
        self, address: Union[str, IPAddress]
    ) -> Optional[Tuple[DNSLabel, ...]]:
        """Brief: Resolve an address to its ordered names (canonical name first).

        Inputs:
          - address: IPv4Address/IPv6Address or address text.

        Outputs:
          - Tuple of names, or None when the address is unknown or malformed.
        """

        if isinstance(address, str):
            try:
                address = ipaddress.ip_address(address)
            except ValueError:
                return None
        return self.reverse.get(address)

    def to_dict(self) -> Dict[str, object]:
        """Return a JSON-ready view with record order preserved."""
        return {
            "domain": domain_to_text(self.domain),
            "forward": [
                [str(name), [str(a) for a in addrs]]
                for name, addrs in self.forward.items()
            ],
            "reverse": [
                [str(addr), [str(n) for n in names]]
                for addr, names in self.reverse.items()
            ],
        }

    def serialize(self) -> bytes:
        """Canonical byte encoding; identical inputs always give identical bytes."""
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class BuildResult:
    snapshot: ZoneSnapshot
    records: int
    dropped: int


class _ZoneDraft:
    """Mutable accumulator used only inside one ZoneBuilder.build() call."""

    def __init__(self) -> None:
        self.forward: Dict[DNSLabel, List[IPAddress]] = {}
        self.reverse: Dict[IPAddress, List[DNSLabel]] = {}

    def add_forward(self, name: DNSLabel, address: IPAddress) -> None:
        addrs = self.forward.setdefault(name, [])
        if address not in addrs:
            addrs.append(address)

    def add(self, name: DNSLabel, address: IPAddress) -> None:
        self.add_forward(name, address)
        names = self.reverse.setdefault(address, [])
        if name not in names:
            names.append(name)

    def freeze(self, domain: DNSLabel) -> ZoneSnapshot:
        forward = {name: tuple(addrs) for name, addrs in self.forward.items()}
        reverse = {addr: tuple(names) for addr, names in self.reverse.items()}

        for addr, names in reverse.items():
            if not names:
                raise ZoneBuildError("address %s has no names" % addr)
            for name in names:
                if addr not in forward.get(name, ()):
                    raise ZoneBuildError(
                        "reverse record %s -> %s has no forward record" % (addr, name)
                    )
        for name, addrs in forward.items():
            if not addrs:
                raise ZoneBuildError("name %s has no addresses" % name)
            if not is_subdomain(name, domain):
                raise ZoneBuildError("name %s is outside %s" % (name, domain))

        nonterminals = {domain}
        for name in forward:
            labels = name.label
            for i in range(1, len(labels) - len(domain.label) + 1):
                parent = DNSLabel(labels[i:])
                if parent not in forward:
                    nonterminals.add(parent)

        return ZoneSnapshot(
            domain,
            MappingProxyType(forward),
            MappingProxyType(reverse),
            nonterminals=frozenset(nonterminals),
        )


def _member_addresses(member: MemberRecord) -> List[IPAddress]:
    addresses: List[IPAddress] = []
    for raw in member.addresses:
        address = parse_ip_from_cidr(raw)
        if address not in addresses:
            addresses.append(address)
    return addresses


class ZoneBuilder:
    """Merge membership and hosts-file records into a ZoneSnapshot.

    Inputs:
      - domain: Validated domain every record is rooted under.
      - wildcard_names: When True, publish ``*.<member-name>`` for every
        member display name and ``*.<domain>`` for the primary member.
      - primary_member_id: Member id of this resolver's own node; its
        addresses answer the domain-level wildcard.
    """

    def __init__(
        self,
        domain: DNSLabel,
        wildcard_names: bool = False,
        primary_member_id: Optional[str] = None,
    ) -> None:
        self.domain = domain
        self.wildcard_names = bool(wildcard_names)
        self.primary_member_id = primary_member_id.lower() if primary_member_id else None

    def build(self, members: Iterable[MemberRecord], hosts: HostsMapping) -> BuildResult:
        """Brief: Build a snapshot from one cycle's inputs.

        Inputs:
          - members: Raw member records from the membership source.
          - hosts: Mapping produced by parse_hosts().

        Outputs:
          - BuildResult with the snapshot, the number of members published and
            the number of member records dropped for invalid data.

        Raises:
          - ZoneBuildError when the merged records violate a zone invariant
            or merging fails unexpectedly. Nothing is published in that case.
        """

        try:
            return self._build(members, hosts)
        except ZoneBuildError:
            raise
        except Exception as exc:
            raise ZoneBuildError("zone build failed: %s" % exc) from exc

    def _build(self, members: Iterable[MemberRecord], hosts: HostsMapping) -> BuildResult:
        draft = _ZoneDraft()
        published = 0
        dropped = 0
        primary: List[IPAddress] = []

        for member in members:
            if not member.authorized:
                logger.debug("skipping unauthorized member %s", member.member_id)
                continue
            try:
                addresses = _member_addresses(member)
                id_name = member_id_name(member.member_id, self.domain)
            except (InvalidAddressError, InvalidNameError) as exc:
                dropped += 1
                logger.warning("dropping member %r: %s", member.member_id, exc)
                continue
            if not addresses:
                logger.debug("member %s has no addresses", member.member_id)
                continue

            display = parse_member_name(member.name, self.domain)
            if display is None and member.name:
                logger.info(
                    "member %s: name %r is not a valid DNS name; publishing %s only",
                    member.member_id,
                    member.name,
                    id_name,
                )

            names = [display, id_name] if display is not None else [id_name]
            for name in names:
                for address in addresses:
                    draft.add(name, address)

            if self.wildcard_names and display is not None:
                try:
                    wildcard = wildcard_name(display)
                except InvalidNameError as exc:
                    # The member itself is still published.
                    logger.warning(
                        "member %s: skipping wildcard record: %s", member.member_id, exc
                    )
                else:
                    for address in addresses:
                        draft.add_forward(wildcard, address)

            if self.primary_member_id and member.member_id.lower() == self.primary_member_id:
                primary = addresses
            published += 1

        for address, host_names in hosts.items():
            for name in host_names:
                draft.add(name, address)

        if self.wildcard_names and primary:
            try:
                domain_wildcard = wildcard_name(self.domain)
            except InvalidNameError as exc:
                logger.warning("skipping domain wildcard record: %s", exc)
                primary = []
            for address in primary:
                draft.add_forward(domain_wildcard, address)

        return BuildResult(draft.freeze(self.domain), published, dropped)


class ZoneStore:
    """Hold the live ZoneSnapshot and answer lookups against it.

    Lookups read ``self._snapshot`` once; publish() replaces it with one
    assignment under a writer lock, so readers never block and never observe
    a partially replaced zone.
    """

    def __init__(self, domain: DNSLabel, initial: Optional[ZoneSnapshot] = None) -> None:
        self.domain = domain
        self._snapshot = initial if initial is not None else ZoneSnapshot.empty(domain)
        self._publish_lock = threading.Lock()

    @property
    def current(self) -> ZoneSnapshot:
        return self._snapshot

    def publish(self, snapshot: ZoneSnapshot) -> ZoneSnapshot:
        """Brief: Atomically make ``snapshot`` the live zone.

        Inputs:
          - snapshot: Snapshot built for this store's domain.

        Outputs:
          - The published snapshot, stamped with the next generation number.

        Raises:
          - ZoneBuildError when the snapshot belongs to a different domain.
        """

        if snapshot.domain != self.domain:
            raise ZoneBuildError(
                "snapshot for %s cannot be published in %s" % (snapshot.domain, self.domain)
            )
        with self._publish_lock:
            stamped = dataclasses.replace(
                snapshot, generation=self._snapshot.generation + 1
            )
            self._snapshot = stamped
        return stamped

    def lookup_forward(self, name: Union[str, DNSLabel]) -> Optional[Tuple[IPAddress, ...]]:
        return self._snapshot.lookup_forward(name)

    def lookup_reverse(
        self, address: Union[str, IPAddress]
    ) -> Optional[Tuple[DNSLabel, ...]]:
        return self._snapshot.lookup_reverse(address)
