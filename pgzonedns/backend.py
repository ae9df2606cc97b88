"""Reading zone records out of the SQL records table."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import closing
from typing import Any

import dns.rrset

from .records import Record

_HOST_TYPES = ("A", "AAAA", "CNAME")


class RecordStore:
    """Queries the records table through a DB-API connection factory.

    ``connect`` is called with no arguments for every query and must return a
    fresh DB-API connection; it is closed once the query is done.
    ``placeholder`` is the parameter marker of the driver, such as ``%s``.
    """

    def __init__(
        self,
        connect: Callable[[], Any],
        table_name: str,
        placeholder: str = "%s",
    ) -> None:
        self._connect = connect
        self.table_name = table_name
        self.placeholder = placeholder

    def _query(self, sql: str, params: tuple[Any, ...]) -> list[tuple[Any, ...]]:
        with closing(self._connect()) as connection:
            cursor = connection.cursor()
            try:
                cursor.execute(sql, params)
                return list(cursor.fetchall())
            finally:
                cursor.close()

    def find_records(self, zone: str, name: str, *types: str) -> list[Record]:
        """Return the records of ``zone`` owned by ``name`` with one of ``types``.

        ``name`` may be the full query name; the zone suffix is stripped off,
        and a name equal to the zone selects the apex (stored as "").
        """
        if not types:
            return []
        stored_name = "" if name == zone else name.removesuffix("." + zone)
        mark = self.placeholder
        type_marks = ", ".join([mark] * len(types))
        sql = (
            f"SELECT name, zone, ttl, record_type, content FROM {self.table_name} "
            f"WHERE zone = {mark} AND name = {mark} AND record_type IN ({type_marks})"
        )
        rows = self._query(sql, (zone, stored_name, *types))
        return [
            Record(
                zone=row_zone,
                name=row_name,
                record_type=record_type,
                ttl=int(ttl),
                content=content,
                lookup_hosts=self.hosts,
            )
            for row_name, row_zone, ttl, record_type, content in rows
        ]

    def load_zones(self) -> list[str]:
        """Return every distinct zone held in the table."""
        rows = self._query(f"SELECT DISTINCT zone FROM {self.table_name}", ())
        return [zone for (zone,) in rows]

    def hosts(self, zone: str, name: str) -> list[dns.rrset.RRset]:
        """Return the A, AAAA and CNAME answers for ``name`` in ``zone``."""
        answers = []
        for record in self.find_records(zone, name, *_HOST_TYPES):
            rrset, _ = record.to_rrset()
            if rrset is not None:
                answers.append(rrset)
        return answers