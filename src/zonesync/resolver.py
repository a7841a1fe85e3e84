"""dnslib resolver that answers A/AAAA/PTR queries from a ZoneStore."""

from __future__ import annotations

import ipaddress
import logging
from typing import List

from dnslib import AAAA, PTR, QTYPE, RCODE, RR, A, DNSRecord
from dnslib.server import BaseResolver

from .addresses import address_from_reverse_pointer, is_reverse_name
from .names import is_subdomain
from .zone import ZoneSnapshot, ZoneStore

logger = logging.getLogger(__name__)


class ZoneResolver(BaseResolver):
    """Answer queries for the synced zone.

    Brief:
      - A/AAAA (and ANY) for names under the domain, wildcards included.
      - PTR for reverse names of addresses the zone knows about.
      - NXDOMAIN for names inside the domain that do not exist; NOERROR with
        no answers for the apex and empty non-terminals. REFUSED for anything
        else. Answers for the zone carry the AA bit.
    """

    def __init__(self, store: ZoneStore, ttl: int = 60) -> None:
        self.store = store
        self.ttl = int(ttl)

    def resolve(self, request: DNSRecord, handler) -> DNSRecord:  # noqa: ARG002
        reply = request.reply()
        reply.header.aa = 1
        reply.header.ra = 0

        qname = request.q.qname
        qtype = request.q.qtype
        # One reference for the whole answer, even if a publish lands mid-query.
        snapshot = self.store.current
        logger.debug("query %s type=%s generation=%d", qname, qtype, snapshot.generation)

        if is_reverse_name(qname):
            return self._answer_ptr(reply, snapshot, qname, qtype)

        if not is_subdomain(qname, snapshot.domain):
            reply.header.aa = 0
            reply.header.rcode = RCODE.REFUSED
            return reply

        addresses = snapshot.lookup_forward(qname)
        if addresses is None:
            # The apex and empty non-terminals exist: NOERROR with no answers.
            if not snapshot.name_exists(qname):
                reply.header.rcode = RCODE.NXDOMAIN
            return reply

        for rr in self._address_records(qname, qtype, addresses):
            reply.add_answer(rr)
        return reply

    def _address_records(self, qname, qtype: int, addresses) -> List[RR]:
        records: List[RR] = []
        want_v4 = qtype in (QTYPE.A, QTYPE.ANY)
        want_v6 = qtype in (QTYPE.AAAA, QTYPE.ANY)
        for address in addresses:
            if isinstance(address, ipaddress.IPv4Address) and want_v4:
                records.append(
                    RR(qname, QTYPE.A, rdata=A(str(address)), ttl=self.ttl)
                )
            elif isinstance(address, ipaddress.IPv6Address) and want_v6:
                records.append(
                    RR(qname, QTYPE.AAAA, rdata=AAAA(str(address)), ttl=self.ttl)
                )
        return records

    def _answer_ptr(self, reply: DNSRecord, snapshot: ZoneSnapshot, qname, qtype: int) -> DNSRecord:
        address = address_from_reverse_pointer(qname)
        names = snapshot.lookup_reverse(address) if address is not None else None
        if names is None:
            reply.header.aa = 0
            reply.header.rcode = RCODE.REFUSED
            return reply

        if qtype in (QTYPE.PTR, QTYPE.ANY):
            for name in names:
                reply.add_answer(
                    RR(qname, QTYPE.PTR, rdata=PTR(str(name)), ttl=self.ttl)
                )
        return reply
