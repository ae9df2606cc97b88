import sqlite3
from datetime import timedelta
from unittest import mock

import dns.flags
import dns.message
import dns.name
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import pytest

from pgzonedns.backend import RecordStore
from pgzonedns.config import Config
from pgzonedns.handler import PostgresDnsHandler, UnmatchedZone

ROWS = [
    ("www", "example.com.", 60, "A", '{"ip": "192.0.2.1"}'),
    ("", "example.com.", 0, "SOA", '{"ns": "ns1.example.com.", "MBox": "hostmaster.example.com."}'),
    ("", "example.com.", 0, "NS", '{"host": "ns1.example.com."}'),
    ("ns1", "example.com.", 0, "A", '{"ip": "192.0.2.53"}'),
    ("ptr", "example.com.", 0, "PTR", "{}"),
    ("broken", "example.com.", 0, "TXT", "not json"),
    ("", "sub.example.com.", 0, "SOA", '{"ns": "ns1.sub.example.com.", "MBox": "hostmaster.sub.example.com."}'),
]


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "records.db"
    connection = sqlite3.connect(path)
    with connection:
        connection.execute(
            "CREATE TABLE coredns_records "
            "(name TEXT, zone TEXT, ttl INTEGER, record_type TEXT, content TEXT)"
        )
        connection.executemany("INSERT INTO coredns_records VALUES (?, ?, ?, ?, ?)", ROWS)
    connection.close()
    return path


@pytest.fixture
def config():
    return Config(zone_update_interval=timedelta(minutes=10))


@pytest.fixture
def store(db_path):
    return RecordStore(lambda: sqlite3.connect(db_path), "coredns_records", "?")


@pytest.fixture
def handler(config, store):
    return PostgresDnsHandler(config, store)


def _find(response, section, name, rdtype):
    return response.find_rrset(
        section, dns.name.from_text(name), dns.rdataclass.IN, rdtype
    )


def test_answers_a_query(handler):
    response = handler.serve(dns.message.make_query("www.example.com.", "A"))
    assert response.rcode() == dns.rcode.NOERROR
    assert response.flags & dns.flags.AA
    assert not response.flags & dns.flags.RA
    rrset = _find(response, response.answer, "www.example.com.", dns.rdatatype.A)
    assert [rdata.address for rdata in rrset] == ["192.0.2.1"]
    assert rrset.ttl == 60


def test_query_name_is_case_insensitive(handler):
    response = handler.serve(dns.message.make_query("WWW.Example.COM.", "A"))
    rrset = _find(response, response.answer, "www.example.com.", dns.rdatatype.A)
    assert [rdata.address for rdata in rrset] == ["192.0.2.1"]


def test_missing_name_returns_soa_in_authority(handler):
    response = handler.serve(dns.message.make_query("nothing.example.com.", "A"))
    assert response.rcode() == dns.rcode.NOERROR
    assert response.answer == []
    soa = _find(response, response.authority, "example.com.", dns.rdatatype.SOA)
    assert soa[0].mname.to_text() == "ns1.example.com."


def test_ns_answer_carries_addresses_as_extras(handler):
    response = handler.serve(dns.message.make_query("example.com.", "NS"))
    ns = _find(response, response.answer, "example.com.", dns.rdatatype.NS)
    assert ns[0].target.to_text() == "ns1.example.com."
    glue = _find(response, response.additional, "ns1.example.com.", dns.rdatatype.A)
    assert [rdata.address for rdata in glue] == ["192.0.2.53"]


def test_zone_transfer_is_not_implemented(handler):
    response = handler.serve(dns.message.make_query("example.com.", "AXFR"))
    assert response.rcode() == dns.rcode.NOTIMP
    assert response.flags & dns.flags.AA


def test_unsupported_stored_type_is_not_implemented(handler):
    response = handler.serve(dns.message.make_query("ptr.example.com.", "PTR"))
    assert response.rcode() == dns.rcode.NOTIMP


def test_broken_content_is_server_failure(handler):
    response = handler.serve(dns.message.make_query("broken.example.com.", "TXT"))
    assert response.rcode() == dns.rcode.SERVFAIL
    assert response.answer == []


def test_database_failure_is_server_failure(db_path, config):
    store = RecordStore(lambda: sqlite3.connect(db_path), "missing_records", "?")
    handler = PostgresDnsHandler(config, store)
    response = handler.serve(dns.message.make_query("www.example.com.", "A"))
    assert response.rcode() == dns.rcode.SERVFAIL
    assert response.flags & dns.flags.AA


def test_unmatched_zone_without_next_raises(handler):
    with pytest.raises(UnmatchedZone):
        handler.serve(dns.message.make_query("www.example.net.", "A"))


def test_unmatched_zone_goes_to_next_handler(config, store):
    passed = []

    def next_handler(query):
        passed.append(query)
        reply = dns.message.make_response(query)
        reply.set_rcode(dns.rcode.REFUSED)
        return reply

    handler = PostgresDnsHandler(config, store, next_handler)
    query = dns.message.make_query("www.example.net.", "A")
    response = handler.serve(query)
    assert passed == [query]
    assert response.rcode() == dns.rcode.REFUSED


def test_refresh_zones_loads_distinct_zones(handler):
    handler.refresh_zones()
    assert sorted(handler.zones) == ["example.com.", "sub.example.com."]


def test_match_zone_prefers_longest(handler):
    handler.refresh_zones()
    assert handler.match_zone("a.sub.example.com.") == "sub.example.com."
    assert handler.match_zone("a.example.com.") == "example.com."
    assert handler.match_zone("A.EXAMPLE.COM.") == "example.com."
    assert handler.match_zone("example.net.") is None


def test_zones_reload_after_interval(handler, db_path):
    with mock.patch("pgzonedns.handler.time.monotonic", return_value=1000.0):
        handler.serve(dns.message.make_query("www.example.com.", "A"))

    connection = sqlite3.connect(db_path)
    with connection:
        connection.execute(
            "INSERT INTO coredns_records VALUES (?, ?, ?, ?, ?)",
            ("www", "example.net.", 0, "A", '{"ip": "198.51.100.7"}'),
        )
    connection.close()

    with mock.patch("pgzonedns.handler.time.monotonic", return_value=1060.0):
        with pytest.raises(UnmatchedZone):
            handler.serve(dns.message.make_query("www.example.net.", "A"))

    with mock.patch("pgzonedns.handler.time.monotonic", return_value=1601.0):
        response = handler.serve(dns.message.make_query("www.example.net.", "A"))
    rrset = _find(response, response.answer, "www.example.net.", dns.rdatatype.A)
    assert [rdata.address for rdata in rrset] == ["198.51.100.7"]


def test_name(handler):
    assert handler.name() == "handler"


def test_query_without_question_is_rejected(handler):
    with pytest.raises(ValueError):
        handler.serve(dns.message.Message())