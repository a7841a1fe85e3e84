"""Address helpers: CIDR stripping, reverse pointers and derived IPv6 addresses."""

from __future__ import annotations

import ipaddress
from typing import Optional, Union

from dnslib import DNSLabel

from .errors import InvalidAddressError

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_V4_REVERSE = (b"in-addr", b"arpa")
_V6_REVERSE = (b"ip6", b"arpa")


def parse_ip_from_cidr(text: str) -> IPAddress:
    """Brief: Strip an optional ``/<prefix-length>`` suffix and parse the address.

    Inputs:
      - text: "192.168.12.1/16", "fe80::abcd/128" or a bare address.

    Outputs:
      - IPv4Address or IPv6Address without the prefix length.

    Raises:
      - InvalidAddressError when the address or prefix length is malformed.

    Example:
      >>> parse_ip_from_cidr("10.0.0.0/8")
      IPv4Address('10.0.0.0')
    """

    if not isinstance(text, str):
        raise InvalidAddressError("address must be a string, got %r" % (text,))

    raw = text.strip()
    addr_text, sep, prefix = raw.partition("/")
    try:
        address = ipaddress.ip_address(addr_text)
    except ValueError as exc:
        raise InvalidAddressError("invalid address %r: %s" % (text, exc)) from exc

    if sep:
        # Validate the prefix length against the address family without
        # requiring host bits to be zero.
        try:
            ipaddress.ip_interface("%s/%s" % (addr_text, prefix))
        except ValueError as exc:
            raise InvalidAddressError(
                "invalid prefix length in %r: %s" % (text, exc)
            ) from exc
    return address


def reverse_pointer(address: IPAddress) -> DNSLabel:
    """Return the in-addr.arpa / ip6.arpa name for ``address``."""
    return DNSLabel(address.reverse_pointer.encode("ascii").split(b"."))


def address_from_reverse_pointer(name: DNSLabel) -> Optional[IPAddress]:
    """Brief: Recover an address from a full-length reverse pointer name.

    Inputs:
      - name: e.g. ``1.0.0.127.in-addr.arpa.`` or a 32-nibble ip6.arpa name.

    Outputs:
      - The address, or None when ``name`` is not a complete reverse name.
    """

    labels = tuple(lbl.lower() for lbl in name.label)
    try:
        if labels[-2:] == _V4_REVERSE and len(labels) == 6:
            octets = [lbl.decode("ascii") for lbl in reversed(labels[:4])]
            return ipaddress.IPv4Address(".".join(octets))
        if labels[-2:] == _V6_REVERSE and len(labels) == 34:
            nibbles = "".join(lbl.decode("ascii") for lbl in reversed(labels[:32]))
            if len(nibbles) != 32:
                return None
            return ipaddress.IPv6Address(int(nibbles, 16))
    except (ValueError, UnicodeDecodeError):
        return None
    return None


def is_reverse_name(name: DNSLabel) -> bool:
    labels = tuple(lbl.lower() for lbl in name.label)
    return labels[-2:] in (_V4_REVERSE, _V6_REVERSE)


def _network_int(network_id: str) -> int:
    if len(network_id) != 16:
        raise InvalidAddressError("network id must be 16 hex digits: %r" % network_id)
    try:
        return int(network_id, 16)
    except ValueError as exc:
        raise InvalidAddressError("invalid network id %r" % network_id) from exc


def _member_int(member_id: str) -> int:
    if len(member_id) != 10:
        raise InvalidAddressError("member id must be 10 hex digits: %r" % member_id)
    try:
        return int(member_id, 16)
    except ValueError as exc:
        raise InvalidAddressError("invalid member id %r" % member_id) from exc


def rfc4193_address(network_id: str, member_id: str) -> ipaddress.IPv6Address:
    """Brief: Compute a member's RFC 4193 address on a network.

    Layout: ``0xfd | network id (64 bits) | 0x9993 | member id (40 bits)``.

    Inputs:
      - network_id: 16 hex digit network id.
      - member_id: 10 hex digit member id.

    Outputs:
      - IPv6Address.
    """

    value = (0xFD << 120) | (_network_int(network_id) << 56)
    value |= 0x9993 << 40
    value |= _member_int(member_id)
    return ipaddress.IPv6Address(value)


def sixplane_address(network_id: str, member_id: str) -> ipaddress.IPv6Address:
    """Brief: Compute a member's 6PLANE address on a network.

    Layout: ``0xfc | (nwid_hi32 ^ nwid_lo32) | member id (40 bits) | ...::1``.

    Inputs:
      - network_id: 16 hex digit network id.
      - member_id: 10 hex digit member id.

    Outputs:
      - IPv6Address.
    """

    nwid = _network_int(network_id)
    folded = ((nwid >> 32) ^ nwid) & 0xFFFFFFFF
    value = (0xFC << 120) | (folded << 88) | (_member_int(member_id) << 48) | 1
    return ipaddress.IPv6Address(value)
