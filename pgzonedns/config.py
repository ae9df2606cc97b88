"""Parsing of the server block that configures the PostgreSQL zone backend."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from fractions import Fraction

DEFAULT_TTL = 360
DEFAULT_MAX_LIFETIME = timedelta(minutes=1)
DEFAULT_MAX_OPEN_CONNECTIONS = 10
DEFAULT_MAX_IDLE_CONNECTIONS = 10
DEFAULT_ZONE_UPDATE_INTERVAL = timedelta(minutes=10)

_INT64_MAX = (1 << 63) - 1


class ConfigError(ValueError):
    """The configuration block is malformed."""


@dataclass
class Config:
    """Settings for the PostgreSQL backed zone handler."""

    datasource: str = ""
    table_prefix: str = "coredns_"
    max_lifetime: timedelta = timedelta(0)
    max_open_connections: int = 0
    max_idle_connections: int = 0
    zone_update_interval: timedelta = timedelta(0)
    ttl: int = 300

    def table_name(self) -> str:
        """The name of the table that holds the records."""
        return self.table_prefix + "records"


_UNITS = {"ns": 1, "us": 10**3, "µs": 10**3, "μs": 10**3, "ms": 10**6,
          "s": 10**9, "m": 60 * 10**9, "h": 3600 * 10**9}
_COMPONENT = re.compile(r"([0-9]*)(?:\.([0-9]*))?(ns|us|µs|μs|ms|s|m|h)?")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as "1h30m", "1.5s" or "-250ms"."""
    negative = text[:1] == "-"
    rest = text[1:] if text[:1] in ("-", "+") else text
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f"invalid duration {text!r}")
    total = Fraction(0)
    pos = 0
    while pos < len(rest):
        match = _COMPONENT.match(rest, pos)
        whole, fraction, unit = match.groups()
        if not (whole or fraction) or unit is None:
            raise ValueError(f"invalid duration {text!r}")
        value = Fraction(int(whole or "0"))
        if fraction:
            value += Fraction(int(fraction), 10 ** len(fraction))
        total += value * _UNITS[unit]
        pos = match.end()
    nanoseconds = int(total)
    if nanoseconds > _INT64_MAX + negative:
        raise ValueError(f"invalid duration {text!r}")
    delta = timedelta(microseconds=nanoseconds // 1000)
    return -delta if negative else delta


_LEXEME = re.compile(
    r'"(?P<quoted>(?:\\.|[^"\\])*)"|(?P<comment>#[^\n]*)|(?P<word>[^\s"#][^\s"]*)|(?P<stray>")',
    re.DOTALL,
)


def _lex(text: str) -> list[tuple[str, int, int]]:
    """Return (text, first line, last line) for each word of the block."""
    lexemes = []
    for match in _LEXEME.finditer(text):
        line = text.count("\n", 0, match.start()) + 1
        if match["stray"] is not None:
            raise ConfigError(f"line {line}: unterminated quoted string")
        if match["comment"] is None:
            quoted = match["quoted"]
            value = quoted.replace('\\"', '"') if quoted is not None else match["word"]
            lexemes.append((value, line, line + match[0].count("\n")))
    return lexemes


class _Dispenser:
    """Walks the words of one directive the way the server's config reader does."""

    def __init__(self, lexemes: list[tuple[str, int, int]]) -> None:
        self._lexemes = lexemes
        self._cursor = -1

    @property
    def val(self) -> str:
        return self._lexemes[self._cursor][0] if self._cursor >= 0 else ""

    @property
    def line(self) -> int:
        return self._lexemes[self._cursor][1] if self._cursor >= 0 else 0

    def next(self) -> bool:
        if self._cursor + 1 < len(self._lexemes):
            self._cursor += 1
            return True
        return False

    def next_arg(self) -> bool:
        if self._cursor < 0:
            return self.next()
        if self._cursor + 1 < len(self._lexemes) and (
            self._lexemes[self._cursor + 1][1] == self._lexemes[self._cursor][2]
        ):
            self._cursor += 1
            return True
        return False

    def next_block(self) -> bool:
        if not self.next_arg():
            return False
        if self.val != "{":
            self._cursor -= 1
            return False
        self.next()
        return self.val != "}"

    def argument(self, key: str) -> str:
        if not self.next_arg():
            raise ConfigError(
                f"line {self.line}: wrong argument count or unexpected line ending after '{key}'"
            )
        return self.val


def _int_or(text: str, default: int) -> int:
    if re.fullmatch(r"[+-]?[0-9]+", text) and -_INT64_MAX - 1 <= int(text) <= _INT64_MAX:
        return int(text)
    return default


def _duration_or(text: str, default: timedelta) -> timedelta:
    try:
        return parse_duration(text)
    except ValueError:
        return default


def parse_config(text: str) -> Config:
    """Parse a "postgresql { ... }" block into a Config."""
    config = Config()
    d = _Dispenser(_lex(text))
    d.next()
    if not d.next_block():
        return config
    while True:
        key = d.val
        match key:
            case "datasource":
                config.datasource = d.argument(key)
            case "table_prefix":
                config.table_prefix = d.argument(key)
            case "max_lifetime":
                config.max_lifetime = _duration_or(d.argument(key), DEFAULT_MAX_LIFETIME)
            case "max_open_connections":
                config.max_open_connections = _int_or(d.argument(key), DEFAULT_MAX_OPEN_CONNECTIONS)
            case "max_idle_connections":
                config.max_idle_connections = _int_or(d.argument(key), DEFAULT_MAX_IDLE_CONNECTIONS)
            case "zone_update_interval":
                config.zone_update_interval = _duration_or(
                    d.argument(key), DEFAULT_ZONE_UPDATE_INTERVAL
                )
            case "ttl":
                config.ttl = _int_or(d.argument(key), DEFAULT_TTL) & 0xFFFFFFFF
            case "}":
                pass
            case _:
                raise ConfigError(f"line {d.line}: unknown property '{key}'")
        if not d.next():
            break
    return config