"""Small helpers shared by the HTTP front ends."""

from __future__ import annotations

import ssl
from typing import Iterable, Mapping, Union

HeaderValue = Union[str, Iterable[str]]


def acme_hosts(value: str) -> list[str]:
    """Split a comma separated host list, dropping empty entries."""
    return [host for host in value.split(",") if host]


def request_to_metadata(
    headers: Union[Mapping[str, HeaderValue], Iterable[tuple[str, HeaderValue]]],
) -> dict[str, str]:
    """Turn request headers into call metadata, joining repeated values with commas."""
    items = headers.items() if hasattr(headers, "items") else headers
    collected: dict[str, list[str]] = {}
    for name, value in items:
        values = collected.setdefault(name, [])
        if isinstance(value, str):
            values.append(value)
        else:
            values.extend(value)
    return {name: ",".join(values) for name, values in collected.items()}


def tls_config(cert_file: str, key_file: str, ca_file: str = "") -> ssl.SSLContext:
    """Build a server TLS context; with a CA file, client certificates are required."""
    if not cert_file or not key_file:
        raise ValueError("TLS certificate and key files not specified")

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(cert_file, key_file)
    if ca_file:
        context.load_verify_locations(cafile=ca_file)
        context.verify_mode = ssl.CERT_REQUIRED
    context.set_alpn_protocols(["h2", "http/1.1"])
    return context