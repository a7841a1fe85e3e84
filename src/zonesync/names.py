"""DNS name helpers: label sanitizing, FQDN construction and domain validation.

Brief:
  - Names are represented as dnslib.DNSLabel values. DNSLabel compares and
    hashes labels case-insensitively while preserving the original case, which
    is exactly the DNS matching convention used by the zone.
  - Every function here is pure; the active domain is always passed in
    explicitly.

Inputs:
  - Untrusted display names from the membership source.
  - Name tokens from hosts files.
  - The configured domain string.

Outputs:
  - Fully-qualified DNSLabel values rooted under the domain, or None/errors.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional, Sequence, Tuple, Union

from cachetools import LRUCache, cached
from dnslib import DNSLabel

from .errors import InvalidDomainError, InvalidNameError

# RFC 8375 special-use domain for residential networks.
DEFAULT_DOMAIN = "home.arpa"

MAX_LABEL_OCTETS = 63
MAX_NAME_OCTETS = 255
WILDCARD_LABEL = "*"

_LABEL_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?$")
_WHITESPACE_RE = re.compile(r"\s+")
_DISALLOWED_RE = re.compile(r"[^A-Za-z0-9.\-]")
_MEMBER_ID_RE = re.compile(r"^[0-9a-fA-F]{10}$")


@cached(cache=LRUCache(maxsize=4096))
def is_valid_label(label: str) -> bool:
    """Brief: Check a single label against the LDH (letters/digits/hyphen) grammar.

    Inputs:
      - label: One dot-free label.

    Outputs:
      - bool: True when the label is 1..63 ASCII octets of letters, digits and
        hyphens, without a leading or trailing hyphen.
    """

    if not label or len(label) > MAX_LABEL_OCTETS:
        return False
    if not label.isascii():
        return False
    return bool(_LABEL_RE.match(label))


def wire_length(labels: Sequence[bytes]) -> int:
    """Return the encoded length of a name: one length octet per label plus the root."""
    return sum(len(lbl) + 1 for lbl in labels) + 1


def _split_labels(text: str) -> Tuple[str, ...]:
    return tuple(text.split("."))


def _make_name(labels: Iterable[str], domain: DNSLabel) -> DNSLabel:
    """Brief: Join validated text labels with the domain into one DNSLabel.

    Inputs:
      - labels: Text labels, already validated.
      - domain: Validated domain.

    Outputs:
      - DNSLabel for ``labels + domain``.

    Raises:
      - InvalidNameError when the resulting name exceeds 255 octets.
    """

    encoded = tuple(lbl.encode("ascii") for lbl in labels) + tuple(domain.label)
    if wire_length(encoded) > MAX_NAME_OCTETS:
        raise InvalidNameError(
            "name exceeds %d octets: %s"
            % (MAX_NAME_OCTETS, b".".join(encoded).decode("ascii"))
        )
    return DNSLabel(encoded)


def domain_or_default(domain: Optional[str]) -> DNSLabel:
    """Brief: Validate a configured domain suffix or return the built-in default.

    Inputs:
      - domain: Domain text such as "zerotier" or "test.subdomain", or None.

    Outputs:
      - DNSLabel for the domain.

    Raises:
      - InvalidDomainError for empty strings, a bare ".", a trailing dot, or any
        label outside the LDH grammar.

    Example:
      >>> str(domain_or_default("test.subdomain"))
      'test.subdomain.'
    """

    if domain is None:
        domain = DEFAULT_DOMAIN

    if not isinstance(domain, str) or not domain:
        raise InvalidDomainError("domain name must not be empty if provided")

    labels = _split_labels(domain)
    for label in labels:
        if not is_valid_label(label):
            raise InvalidDomainError("invalid domain name %r" % domain)

    encoded = tuple(lbl.encode("ascii") for lbl in labels)
    if wire_length(encoded) > MAX_NAME_OCTETS:
        raise InvalidDomainError("domain name %r is too long" % domain)
    return DNSLabel(encoded)


def domain_to_text(domain: DNSLabel) -> str:
    """Render a domain without its trailing root dot ("home.arpa")."""
    return str(domain).rstrip(".")


def to_fqdn(name: str, domain: DNSLabel) -> DNSLabel:
    """Brief: Strictly append the domain to a relative name.

    Inputs:
      - name: Relative name such as "islay" or "islay.localdomain".
      - domain: Validated domain.

    Outputs:
      - DNSLabel for ``name.domain``.

    Raises:
      - InvalidNameError if any label of ``name`` is invalid or the result is
        longer than 255 octets.
    """

    text = name.strip()
    labels = _split_labels(text)
    if not text or not all(is_valid_label(lbl) for lbl in labels):
        raise InvalidNameError("invalid name %r" % name)
    return _make_name(labels, domain)


def sanitize_label_text(name: str) -> str:
    """Brief: Reduce a free-form display name to DNS-safe characters.

    Inputs:
      - name: Arbitrary display name, e.g. "Erik's laptop".

    Outputs:
      - str: Whitespace runs become "-", everything outside [A-Za-z0-9.-] is
        dropped ("Eriks-laptop"). The result may still be invalid.
    """

    text = _WHITESPACE_RE.sub("-", name.strip())
    return _DISALLOWED_RE.sub("", text)


def parse_member_name(name: Optional[str], domain: DNSLabel) -> Optional[DNSLabel]:
    """Brief: Turn an untrusted member display name into a published name.

    Inputs:
      - name: Display name from the membership source (may be None).
      - domain: Validated domain.

    Outputs:
      - DNSLabel rooted under ``domain``, or None when nothing valid remains.

    Example:
      >>> d = domain_or_default("zerotier")
      >>> str(parse_member_name("Erik's laptop", d))
      'Eriks-laptop.zerotier.'
      >>> parse_member_name("arghle.", d) is None
      True
    """

    if name is None:
        return None

    cleaned = sanitize_label_text(name)
    if not cleaned:
        return None

    try:
        return to_fqdn(cleaned, domain)
    except InvalidNameError:
        return None


def is_subdomain(name: DNSLabel, domain: DNSLabel) -> bool:
    """Brief: Case-insensitive check that ``name`` equals or sits below ``domain``.

    Inputs:
      - name: Candidate name.
      - domain: Suffix to test against.

    Outputs:
      - bool: True when the trailing labels of ``name`` match ``domain``.
    """

    suffix = tuple(lbl.lower() for lbl in domain.label)
    if not suffix:
        return True
    labels = tuple(lbl.lower() for lbl in name.label)
    return labels[-len(suffix) :] == suffix


def relative_labels(name: DNSLabel, domain: DNSLabel) -> Tuple[str, ...]:
    """Brief: Return the text labels of ``name`` that precede ``domain``.

    Inputs:
      - name: Fully-qualified name under ``domain``.
      - domain: Validated domain.

    Outputs:
      - Tuple of text labels; empty when ``name`` equals ``domain`` or is not
        below it.
    """

    if not is_subdomain(name, domain):
        return ()
    prefix = name.label[: len(name.label) - len(domain.label)]
    return tuple(lbl.decode("ascii", errors="replace") for lbl in prefix)


def member_id_name(member_id: str, domain: DNSLabel) -> DNSLabel:
    """Brief: Build the stable ``zt-<member-id>`` name for a member.

    Inputs:
      - member_id: 10 hex digit member identifier.
      - domain: Validated domain.

    Outputs:
      - DNSLabel ``zt-<member-id>.<domain>`` (member id lower-cased).

    Raises:
      - InvalidNameError when ``member_id`` is not 10 hex digits.
    """

    if not _MEMBER_ID_RE.match(member_id or ""):
        raise InvalidNameError("invalid member id %r" % member_id)
    return _make_name(("zt-" + member_id.lower(),), domain)


def wildcard_name(parent: DNSLabel) -> DNSLabel:
    """Return ``*.<parent>``; only used for names the zone synthesizes itself."""
    labels = (WILDCARD_LABEL.encode("ascii"),) + tuple(parent.label)
    if wire_length(labels) > MAX_NAME_OCTETS:
        raise InvalidNameError("wildcard for %s is too long" % parent)
    return DNSLabel(labels)


def as_name(value: Union[str, DNSLabel]) -> DNSLabel:
    """Brief: Coerce query text ("host.domain." or "host.domain") to a DNSLabel.

    Inputs:
      - value: DNSLabel or presentation-form text.

    Outputs:
      - DNSLabel; no validation is applied, lookups of odd names simply miss.
    """

    if isinstance(value, DNSLabel):
        return value
    text = str(value).rstrip(".")
    if not text:
        return DNSLabel(())
    return DNSLabel(tuple(lbl.encode("utf-8") for lbl in text.split(".")))
