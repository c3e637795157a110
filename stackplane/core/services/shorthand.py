"""
Shorthand parsing — shared by the validator (to check) and the
normalizer (to rewrite).

Ports::

    80                      → 80:80/tcp
    "8080:80"               → 8080:80/tcp
    "8080:80/udp"           → 8080:80/udp
    "127.0.0.1:8080:80"     → 8080:80/tcp on 127.0.0.1
    {target: 80, published: 8080, protocol: tcp}

Volumes::

    "$_data:/var/lib/app"           symbolic source
    "$_config/nginx.conf:/etc/nginx/nginx.conf:ro"
    "/srv/shared:/shared"           literal path, untouched
    "cache:/cache"                  named volume, untouched
    {source: $_data, target: /var/lib/app, read_only: true}
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from stackplane.core.models.plan import PortMapping

PORT_MIN = 1
PORT_MAX = 65535
PROTOCOLS = ("tcp", "udp")
PORT_EXPECTED = "[host_ip:]published:target[/tcp|udp] with ports in 1-65535"

SYMBOL_PREFIX = "$_"


class ShorthandError(ValueError):
    """A shorthand entry that cannot be parsed."""

    def __init__(self, message: str, expected: str):
        self.expected = expected
        super().__init__(message)


# ── Ports ───────────────────────────────────────────────────────────


def parse_port(entry: Any) -> PortMapping:
    """Parse any accepted port form into a PortMapping.

    Raises:
        ShorthandError: If the entry is malformed or out of range.
    """
    if isinstance(entry, bool):
        raise ShorthandError("port must be a number, string or mapping", PORT_EXPECTED)
    if isinstance(entry, int):
        port = _port_number(entry, "port")
        return PortMapping(published=port, target=port)
    if isinstance(entry, str):
        return _parse_port_string(entry)
    if isinstance(entry, Mapping):
        return _parse_port_mapping(entry)
    raise ShorthandError(
        f"port entry of type {type(entry).__name__} is not supported", PORT_EXPECTED
    )


def _parse_port_string(entry: str) -> PortMapping:
    spec, proto = entry.strip(), "tcp"
    if "/" in spec:
        spec, proto = spec.rsplit("/", 1)
    proto = _protocol(proto)

    parts = spec.split(":")
    host_ip: str | None = None
    if len(parts) == 1:
        published = target = _port_number(parts[0], "port")
    elif len(parts) == 2:
        published = _port_number(parts[0], "published")
        target = _port_number(parts[1], "target")
    elif len(parts) == 3:
        if not parts[0]:
            raise ShorthandError(f"empty host ip in {entry!r}", PORT_EXPECTED)
        host_ip = parts[0]
        published = _port_number(parts[1], "published")
        target = _port_number(parts[2], "target")
    else:
        raise ShorthandError(f"cannot parse port {entry!r}", PORT_EXPECTED)

    return PortMapping(published=published, target=target, protocol=proto, host_ip=host_ip)


def _parse_port_mapping(entry: Mapping[str, Any]) -> PortMapping:
    if "target" not in entry:
        raise ShorthandError("structured port is missing 'target'", PORT_EXPECTED)
    target = _port_number(entry["target"], "target")
    published = _port_number(entry.get("published", target), "published")
    host_ip = entry.get("host_ip")
    if host_ip is not None and not isinstance(host_ip, str):
        raise ShorthandError("host_ip must be a string", PORT_EXPECTED)
    return PortMapping(
        published=published,
        target=target,
        protocol=_protocol(entry.get("protocol", "tcp")),
        host_ip=host_ip,
    )


def _port_number(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ShorthandError(f"{field} port must be a number, got {value!r}", PORT_EXPECTED)
    if isinstance(value, str):
        text = value.strip()
        if "-" in text:
            raise ShorthandError(f"port ranges are not supported: {value!r}", PORT_EXPECTED)
        if not text.isdigit():
            raise ShorthandError(f"{field} port is not a number: {value!r}", PORT_EXPECTED)
        value = int(text)
    if not isinstance(value, int):
        raise ShorthandError(f"{field} port must be a number, got {value!r}", PORT_EXPECTED)
    if not PORT_MIN <= value <= PORT_MAX:
        raise ShorthandError(
            f"{field} port {value} is outside {PORT_MIN}-{PORT_MAX}", PORT_EXPECTED
        )
    return value


def _protocol(value: Any) -> str:
    if value not in PROTOCOLS:
        raise ShorthandError(f"unsupported protocol {value!r}", "protocol tcp or udp")
    return value


# ── Volumes ─────────────────────────────────────────────────────────


def volume_source(entry: Any) -> str | None:
    """Return the source part of a volume entry.

    A bare string is an anonymous volume (None) unless it is symbolic, in
    which case the whole entry is its source.
    """
    if isinstance(entry, Mapping):
        source = entry.get("source")
        return source if isinstance(source, str) else None
    if isinstance(entry, str):
        parts = entry.split(":", 1)
        if len(parts) == 2 or entry.startswith(SYMBOL_PREFIX):
            return parts[0]
        return None
    return None


def split_symbol(path: str, symbols: Iterable[str]) -> tuple[str | None, str]:
    """Split ``path`` into (symbol, remainder).

    Returns ``(None, path)`` when the path is not symbolic. The longest
    matching symbol wins, and a symbol only matches when followed by the
    end of the string, ``/`` or ``:`` — ``$_database`` is not ``$_data``.

    Raises:
        ShorthandError: If the path starts with the symbol prefix but no
            known symbol matches.
    """
    if not path.startswith(SYMBOL_PREFIX):
        return None, path
    for symbol in sorted(symbols, key=len, reverse=True):
        if path == symbol or path.startswith((symbol + "/", symbol + ":")):
            return symbol, path[len(symbol):]
    head = path.split("/", 1)[0].split(":", 1)[0]
    raise ShorthandError(
        f"unknown directory symbol {head!r}",
        "one of " + ", ".join(sorted(symbols)),
    )
