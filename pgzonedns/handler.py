"""Answering DNS queries from the records kept in the database."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import dns.flags
import dns.message
import dns.name
import dns.rcode
import dns.rdatatype
import dns.rrset

from .backend import RecordStore
from .config import Config
from .records import RecordError

log = logging.getLogger(__name__)

NextHandler = Callable[[dns.message.Message], dns.message.Message]


class UnmatchedZone(LookupError):
    """The query is outside every served zone and there is no next handler."""


def _to_name(text: str) -> dns.name.Name:
    return dns.name.from_text(text if text.endswith(".") else text + ".")


class PostgresDnsHandler:
    """Serves authoritative answers for the zones found in the records table."""

    def __init__(
        self,
        config: Config,
        store: RecordStore,
        next_handler: NextHandler | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.next_handler = next_handler
        self.zones: list[str] = []
        self._last_update: float | None = None

    def name(self) -> str:
        """The handler's name."""
        return "handler"

    def refresh_zones(self) -> None:
        """Reload the list of served zones from the database."""
        zones = self.store.load_zones()
        self._last_update = time.monotonic()
        self.zones = zones

    def _zones_stale(self) -> bool:
        if self._last_update is None:
            return True
        elapsed = time.monotonic() - self._last_update
        return elapsed > self.config.zone_update_interval.total_seconds()

    def match_zone(self, qname: str) -> str | None:
        """Return the longest served zone containing ``qname``, or None."""
        try:
            name = _to_name(qname)
        except dns.exception.DNSException:
            return None
        best: str | None = None
        for zone in self.zones:
            try:
                zone_name = _to_name(zone)
            except dns.exception.DNSException:
                continue
            if name.is_subdomain(zone_name) and (best is None or len(zone) > len(best)):
                best = zone
        return best

    @staticmethod
    def _reply(query: dns.message.Message) -> dns.message.Message:
        response = dns.message.make_response(query)
        response.flags |= dns.flags.AA
        response.flags &= ~dns.flags.RA
        return response

    def _error(
        self,
        query: dns.message.Message,
        rcode: dns.rcode.Rcode,
        error: Exception | None = None,
    ) -> dns.message.Message:
        if error is not None:
            log.error("%s: %s", self.name(), error)
        response = self._reply(query)
        response.set_rcode(rcode)
        return response

    @staticmethod
    def _add(
        response: dns.message.Message,
        section: list[dns.rrset.RRset],
        rrset: dns.rrset.RRset,
    ) -> None:
        target = response.find_rrset(
            section, rrset.name, rrset.rdclass, rrset.rdtype, create=True
        )
        target.update(rrset)

    def serve(self, query: dns.message.Message) -> dns.message.Message:
        """Answer ``query`` from the database, or pass it to the next handler."""
        if not query.question:
            raise ValueError("query has no question")
        question = query.question[0]
        qname = question.name.to_text().lower()
        qtype = dns.rdatatype.to_text(question.rdtype)

        if self._zones_stale():
            try:
                self.refresh_zones()
            except Exception as exc:
                return self._error(query, dns.rcode.SERVFAIL, exc)

        zone = self.match_zone(qname)
        if zone is None:
            if self.next_handler is None:
                raise UnmatchedZone(f"{self.name()}: no next handler for {qname}")
            return self.next_handler(query)

        try:
            records = self.store.find_records(zone, qname, qtype)
            append_soa = not records
            if append_soa:
                records = self.store.find_records(zone, "", "SOA")
        except Exception as exc:
            return self._error(query, dns.rcode.SERVFAIL, exc)

        if qtype == "AXFR":
            return self._error(query, dns.rcode.NOTIMP)

        answers: list[dns.rrset.RRset] = []
        extras: list[dns.rrset.RRset] = []
        for record in records:
            try:
                answer, extras = record.to_rrset()
            except RecordError as exc:
                if exc.unsupported:
                    return self._error(query, dns.rcode.NOTIMP)
                return self._error(query, dns.rcode.SERVFAIL, exc)
            except Exception as exc:
                return self._error(query, dns.rcode.SERVFAIL, exc)
            if answer is not None:
                answers.append(answer)

        response = self._reply(query)
        section = response.authority if append_soa else response.answer
        for rrset in answers:
            self._add(response, section, rrset)
        for rrset in extras:
            self._add(response, response.additional, rrset)
        return response