"""Zone records stored as JSON rows and their conversion to DNS RRsets."""

from __future__ import annotations

import ipaddress
import json
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import dns.exception
import dns.name
import dns.rdataclass
import dns.rdatatype as rt
import dns.rrset
from dns.rdtypes.ANY.CAA import CAA
from dns.rdtypes.ANY.CNAME import CNAME
from dns.rdtypes.ANY.MX import MX
from dns.rdtypes.ANY.NS import NS
from dns.rdtypes.ANY.SOA import SOA
from dns.rdtypes.ANY.TXT import TXT
from dns.rdtypes.IN.A import A
from dns.rdtypes.IN.AAAA import AAAA
from dns.rdtypes.IN.SRV import SRV

from .config import DEFAULT_TTL

SOA_DEFAULT_REFRESH = 86400
SOA_DEFAULT_RETRY = 7200
SOA_DEFAULT_EXPIRE = 3600

_IN = dns.rdataclass.IN

HostLookup = Callable[[str, str], Iterable[dns.rrset.RRset]]
Conversion = tuple["dns.rrset.RRset | None", "list[dns.rrset.RRset]"]


class RecordError(ValueError):
    """A stored record cannot be turned into a DNS answer."""

    def __init__(self, message: str, *, unsupported: bool = False) -> None:
        super().__init__(message)
        self.unsupported = unsupported


def split255(s: str | bytes) -> list[bytes]:
    """Split text into the 255-byte character strings a TXT record holds."""
    data = s.encode("utf-8") if isinstance(s, str) else bytes(s)
    chunks = [data[i:i + 255] for i in range(0, len(data), 255)] or [b""]
    if len(data) >= 255 and len(data) % 255 == 0:
        chunks.append(b"")
    return chunks


def _absolute(text: str) -> dns.name.Name:
    return dns.name.from_text(text if text.endswith(".") else text + ".")


def _field(data: dict[str, Any], key: str) -> Any:
    # JSON field names match case-insensitively, exact match first.
    if key in data:
        return data[key]
    return next((v for k, v in data.items() if k.casefold() == key.casefold()), None)


def _text(data: dict[str, Any], key: str) -> str:
    value = _field(data, key)
    if value is not None and not isinstance(value, str):
        raise RecordError(f"field {key!r} must be a string, got {value!r}")
    return value or ""


def _uint(data: dict[str, Any], key: str, bits: int) -> int:
    value = _field(data, key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < 1 << bits:
        raise RecordError(f"field {key!r} must be a uint{bits}, got {value!r}")
    return value


def _address(data: dict[str, Any]) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    value = _text(data, "ip")
    if not value:
        return None
    try:
        return ipaddress.ip_address(value)
    except ValueError as exc:
        raise RecordError(f"invalid IP address {value!r}") from exc


@dataclass
class Record:
    """One row of the records table."""

    zone: str
    name: str
    record_type: str
    ttl: int = 0
    content: str = ""
    lookup_hosts: HostLookup | None = field(default=None, repr=False, compare=False)

    def fqdn(self) -> str:
        """The owner name: the record name joined to its zone."""
        return f"{self.name}.{self.zone}" if self.name else self.zone

    def min_ttl(self) -> int:
        """The record's TTL, or the default when none is stored."""
        return self.ttl or DEFAULT_TTL

    def serial(self) -> int:
        """A SOA serial taken from the current time."""
        return int(time.time()) & 0xFFFFFFFF

    def _decode(self) -> dict[str, Any]:
        try:
            data = json.loads(self.content)
        except (json.JSONDecodeError, TypeError) as exc:
            raise RecordError(f"invalid content for {self.record_type} {self.fqdn()!r}: {exc}") from exc
        if not isinstance(data, dict):
            raise RecordError(f"content for {self.record_type} {self.fqdn()!r} is not an object")
        return data

    def _answer(self, make: Callable[[], Any], owner: str | None = None) -> dns.rrset.RRset:
        try:
            return dns.rrset.from_rdata(_absolute(owner or self.fqdn()), self.min_ttl(), make())
        except RecordError:
            raise
        except (ValueError, TypeError, dns.exception.DNSException) as exc:
            raise RecordError(f"cannot build {self.record_type} for {self.fqdn()!r}: {exc}") from exc

    def _extras(self, host: str) -> list[dns.rrset.RRset]:
        return list(self.lookup_hosts(self.zone, host)) if self.lookup_hosts else []

    def as_a(self) -> Conversion:
        """Build an A answer from content like {"ip": "192.0.2.1"}."""
        ip = _address(self._decode())
        if ip is None:
            return None, []
        if isinstance(ip, ipaddress.IPv6Address):
            if ip.ipv4_mapped is None:
                raise RecordError(f"A record {self.fqdn()!r} holds an IPv6 address {ip}")
            ip = ip.ipv4_mapped
        return self._answer(lambda: A(_IN, rt.A, str(ip))), []

    def as_aaaa(self) -> Conversion:
        """Build an AAAA answer from content like {"ip": "2001:db8::1"}."""
        ip = _address(self._decode())
        if ip is None:
            return None, []
        if isinstance(ip, ipaddress.IPv4Address):
            ip = ipaddress.IPv6Address(f"::ffff:{ip}")
        return self._answer(lambda: AAAA(_IN, rt.AAAA, str(ip))), []

    def as_txt(self) -> Conversion:
        """Build a TXT answer from content like {"text": "..."}."""
        text = _text(self._decode(), "text")
        if not text:
            return None, []
        return self._answer(lambda: TXT(_IN, rt.TXT, split255(text))), []

    def as_cname(self) -> Conversion:
        """Build a CNAME answer from content like {"host": "..."}."""
        host = _text(self._decode(), "host")
        if not host:
            return None, []
        return self._answer(lambda: CNAME(_IN, rt.CNAME, _absolute(host))), []

    def as_ns(self) -> Conversion:
        """Build an NS answer, with the name server's addresses as extras."""
        host = _text(self._decode(), "host")
        if not host:
            return None, []
        answer = self._answer(lambda: NS(_IN, rt.NS, _absolute(host)))
        return answer, self._extras(host)

    def as_mx(self) -> Conversion:
        """Build an MX answer, with the mail host's addresses as extras."""
        data = self._decode()
        host = _text(data, "host")
        if not host:
            return None, []
        preference = _uint(data, "preference", 16)
        answer = self._answer(lambda: MX(_IN, rt.MX, preference, _absolute(host)))
        return answer, self._extras(host)

    def as_srv(self) -> Conversion:
        """Build an SRV answer from priority, weight, port and target."""
        data = self._decode()
        target = _text(data, "target")
        if not target:
            return None, []
        numbers = [_uint(data, key, 16) for key in ("priority", "weight", "port")]
        return self._answer(lambda: SRV(_IN, rt.SRV, *numbers, _absolute(target))), []

    def as_soa(self) -> Conversion:
        """Build a SOA answer, falling back to generated values when no ns is stored."""
        data = self._decode()
        ns = _text(data, "ns")
        if not ns:
            owner = self.fqdn()
            names = ("ns1." + self.name, "hostmaster." + self.name)
            timers = (SOA_DEFAULT_REFRESH, SOA_DEFAULT_RETRY, SOA_DEFAULT_EXPIRE, self.min_ttl())
        else:
            owner = self.zone
            names = (ns, _text(data, "MBox"))
            timers = tuple(_uint(data, key, 32) for key in ("refresh", "retry", "expire", "minttl"))
        serial = self.serial()
        make = lambda: SOA(_IN, rt.SOA, *map(_absolute, names), serial, *timers)  # noqa: E731
        return self._answer(make, owner), []

    def as_caa(self) -> Conversion:
        """Build a CAA answer from flag, tag and value."""
        data = self._decode()
        tag, value = _text(data, "tag"), _text(data, "value")
        if not tag or not value:
            return None, []
        flag = _uint(data, "flag", 8)
        return self._answer(lambda: CAA(_IN, rt.CAA, flag, tag.encode(), value.encode())), []

    _CONVERTERS = {
        "A": as_a, "AAAA": as_aaaa, "CNAME": as_cname, "SOA": as_soa, "SRV": as_srv,
        "NS": as_ns, "MX": as_mx, "TXT": as_txt, "CAA": as_caa,
    }

    def to_rrset(self) -> Conversion:
        """Convert the record according to its type; unknown types raise RecordError."""
        convert = self._CONVERTERS.get(self.record_type)
        if convert is None:
            raise RecordError(f"unsupported record type {self.record_type!r}", unsupported=True)
        return convert(self)