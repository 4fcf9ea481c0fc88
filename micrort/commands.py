"""Commands shared by the command line, the interactive shell and the bot.

Each command takes a client and/or a registry plus its arguments and
returns the text to show, raising on failure."""

from __future__ import annotations

import json
import math
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from .client import CallOptions, Client
from .registry import MemoryRegistry, Service, format_endpoint, sort_services
from .table import render_table

NETWORK_SERVICE = "go.micro.network"
DNS_SERVICE = "go.micro.network.dns"
ROUTE_FILTERS = ("service", "address", "gateway", "router", "network")

_MAX_INT64 = float(2**63 - 1)

Metadata = Union[Mapping[str, str], Iterable[str], None]


class CommandError(Exception):
    """Raised when a command is given bad arguments or gets an unusable reply."""


def parse_metadata(pairs: Iterable[str]) -> dict[str, str]:
    """Turn "key=value" strings into a dict; entries without "=" are skipped."""
    result: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            continue
        result[key] = value
    return result


def _metadata(metadata: Metadata) -> dict[str, str]:
    if metadata is None:
        return {}
    if isinstance(metadata, Mapping):
        return dict(metadata)
    return parse_metadata(metadata)


def _decode_first(text: str) -> Any:
    """Decode the first JSON value in text, ignoring whatever follows it."""
    value, _ = json.JSONDecoder().raw_decode(text.lstrip())
    return value


def _decode_object(text: str) -> Optional[dict]:
    value = _decode_first(text)
    if value is not None and not isinstance(value, dict):
        raise ValueError("json: cannot unmarshal non-object into a map")
    return value


def _dump_sorted(value: Any) -> str:
    return json.dumps(value, indent="\t", sort_keys=True, ensure_ascii=False)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _go_fraction(value: int, unit: int) -> str:
    whole, frac = divmod(value, unit)
    digits = len(str(unit)) - 1
    tail = f"{frac:0{digits}d}".rstrip("0")
    return f"{whole}.{tail}" if tail else str(whole)


def _format_duration(nanoseconds: int) -> str:
    """Format a nanosecond count the way durations are conventionally printed."""
    if nanoseconds == 0:
        return "0s"
    sign = "-" if nanoseconds < 0 else ""
    u = abs(int(nanoseconds))
    if u < 1_000:
        return f"{sign}{u}ns"
    if u < 1_000_000:
        return f"{sign}{_go_fraction(u, 1_000)}µs"
    if u < 1_000_000_000:
        return f"{sign}{_go_fraction(u, 1_000_000)}ms"
    seconds = _go_fraction(u % 60_000_000_000, 1_000_000_000)
    minutes_total = u // 60_000_000_000
    hours, minutes = divmod(minutes_total, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{sign}{minutes}m{seconds}s"
    return f"{sign}{seconds}s"


def get_peers(value: Optional[Mapping[str, Any]]) -> Optional[dict[str, str]]:
    """Collect node id to address for a network graph node and all its peers."""
    if value is None:
        return None
    node = value["node"]
    peers = {node["id"]: node["address"]}
    for peer in value.get("peers") or []:
        peers.update(get_peers(peer) or {})
    return peers


def _service_from_args(args: Sequence[str]) -> Service:
    if not args:
        raise CommandError("require service definition")
    return Service.from_dict(_decode_first(" ".join(args)))


def register_service(registry: MemoryRegistry, args: Sequence[str]) -> str:
    """Register a service given as a JSON definition."""
    registry.register(_service_from_args(args))
    return "ok"


def deregister_service(registry: MemoryRegistry, args: Sequence[str]) -> str:
    """Deregister a service given as a JSON definition."""
    registry.deregister(_service_from_args(args))
    return "ok"


def _format_value_block(value) -> str:
    if value is not None and value.values:
        return "{\n" + "".join(format_endpoint(v, 0) for v in value.values) + "}"
    return "{}"


def get_service(registry: MemoryRegistry, args: Sequence[str]) -> str:
    """Describe a service: its versions, nodes and endpoints."""
    if not args:
        raise CommandError("service required")
    services = registry.get_service(args[0])
    if not services:
        raise CommandError("Service not found")

    output = ["service  " + services[0].name]
    for service in services:
        if service.version:
            output.append("\nversion " + service.version)
        output.append("\nID\tAddress\tMetadata")
        for node in service.nodes:
            meta = ",".join(f"{k}={v}" for k, v in node.metadata.items())
            output.append(f"{node.id}\t{node.address}\t{meta}")

    for endpoint in services[0].endpoints:
        meta = ",".join(f"{k}={v}" for k, v in endpoint.metadata.items())
        request = _format_value_block(endpoint.request)
        response = _format_value_block(endpoint.response)
        output.append(f"\nEndpoint: {endpoint.name}\n")
        if meta:
            output.append(f"Metadata: {meta}\n")
        output.append(f"Request: {request}\n\nResponse: {response}\n")

    return "\n".join(output)


def list_services(registry: MemoryRegistry) -> str:
    """List registered service names, sorted."""
    return "\n".join(s.name for s in sort_services(registry.list_services()))


def network_connect(client: Client, args: Sequence[str]) -> str:
    """Ask the network to connect to the node at the given address."""
    if not args:
        return ""
    request = {"nodes": [{"address": args[0]}]}
    rsp = client.call(NETWORK_SERVICE, "Network.Connect", request)
    return _dump_sorted(rsp)


def network_connections(client: Client) -> str:
    """Table of the network's immediate peers."""
    rsp = client.call(NETWORK_SERVICE, "Network.Graph", {"depth": 1})
    if not rsp or rsp.get("root") is None:
        return ""
    peers = rsp["root"].get("peers")
    if peers is None:
        return ""
    rows = [[_text(p["node"].get("id")), _text(p["node"].get("address"))] for p in peers]
    return render_table(["NODE", "ADDRESS"], rows)


def network_graph(client: Client) -> str:
    """The whole network graph as indented JSON."""
    rsp = client.call(NETWORK_SERVICE, "Network.Graph", {})
    return _dump_sorted(rsp)


def network_nodes(client: Client) -> str:
    """Table of the nodes in the network."""
    rsp = client.call(NETWORK_SERVICE, "Network.Nodes", {})
    if not rsp or rsp.get("nodes") is None:
        return ""
    rows = [[_text(n.get("id")), _text(n.get("address"))] for n in rsp["nodes"]]
    return render_table(["ID", "ADDRESS"], rows)


def _format_metric(metric: Any) -> str:
    if metric is None or isinstance(metric, bool):
        return _text(metric)
    try:
        number = float(metric)
    except (TypeError, ValueError):
        return str(metric)
    if number == _MAX_INT64:
        return "∞"
    if math.isinf(number) or math.isnan(number):
        return str(number)
    return f"{number:.0f}"


def network_routes(client: Client, filters: Optional[Mapping[str, str]] = None) -> str:
    """Table of network routes, optionally filtered by route fields."""
    filters = filters or {}
    query = {name: filters[name] for name in ROUTE_FILTERS if filters.get(name)}
    rsp = client.call(NETWORK_SERVICE, "Network.Routes", {"query": query})
    if not rsp:
        return ""

    rows = []
    for route in rsp.get("routes") or []:
        rows.append(
            [
                _text(route.get("service")),
                _text(route.get("address")),
                _text(route.get("gateway")),
                _text(route.get("router")),
                _text(route.get("network")),
                _format_metric(route.get("metric")),
                _text(route.get("link")),
            ]
        )
    header = ["SERVICE", "ADDRESS", "GATEWAY", "ROUTER", "NETWORK", "METRIC", "LINK"]
    return render_table(header, rows)


def network_services(client: Client) -> str:
    """Sorted names of the services known to the network."""
    rsp = client.call(NETWORK_SERVICE, "Network.Services", {})
    if not rsp or rsp.get("services") is None:
        return ""
    return "\n".join(sorted(str(s) for s in rsp["services"]))


def _dns_options(token: str) -> CallOptions:
    return CallOptions(retries=3, metadata={"Authorization": "Bearer " + token})


def _dns_records(client: Client, action: str, address: str, domain: str, token: str) -> None:
    record_type = "AAAA" if address.count(":") > 1 else "A"
    request = {
        "records": [{"type": record_type, "name": domain, "value": address, "ttl": 1}]
    }
    client.call(DNS_SERVICE, action, request, _dns_options(token))


def network_dns_advertise(client: Client, address: str, domain: str, token: str) -> str:
    """Advertise an address under a domain in the network DNS."""
    _dns_records(client, "Dns.Advertise", address, domain, token)
    return f"Registered {domain}: {address}"


def network_dns_remove(client: Client, address: str, domain: str, token: str) -> str:
    """Remove an address's record from the network DNS."""
    _dns_records(client, "Dns.Remove", address, domain, token)
    return f"Removed {domain}: {address}"


def network_dns_resolve(client: Client, domain: str, record_type: str, token: str) -> str:
    """Resolve a domain through the network DNS, one value per line."""
    request = {"name": domain, "type": record_type}
    rsp = client.call(DNS_SERVICE, "Dns.Resolve", request, _dns_options(token))
    if not rsp or "records" not in rsp:
        raise CommandError("Response did not contain any records")
    return "\n".join(_text(r.get("value")) for r in rsp["records"] or [])


def publish(client: Client, args: Sequence[str], metadata: Metadata = None) -> None:
    """Publish a JSON message to a topic: args are topic then message."""
    if len(args) < 2:
        raise CommandError(
            "require topic and message e.g micro publish event '{\"hello\": \"world\"}'"
        )
    topic, message = args[0], args[1]
    client.publish(topic, _decode_object(message), _metadata(metadata))


def call_service(
    client: Client,
    args: Sequence[str],
    address: str = "",
    output: str = "",
    metadata: Metadata = None,
) -> str:
    """Call service endpoint [request...]; the request defaults to {}."""
    if len(args) < 2:
        raise CommandError(
            'require service and endpoint e.g micro call greeeter Say.Hello \'{"name": "john"}\''
        )
    service, endpoint = args[0], args[1]
    text = " ".join(args[2:]) or "{}"
    request = _decode_object(text)

    raw = output == "raw"
    options = CallOptions(address=address, metadata=_metadata(metadata), raw=raw)
    try:
        rsp = client.call(service, endpoint, request, options)
    except Exception as exc:
        raise CommandError(f"error calling {service}.{endpoint}: {exc}") from exc

    if raw:
        if isinstance(rsp, (bytes, bytearray)):
            return bytes(rsp).decode("utf-8", errors="replace")
        return _text(rsp)
    return json.dumps(rsp, indent="\t", ensure_ascii=False)


def query_health(
    client: Client, registry: MemoryRegistry, args: Sequence[str], address: str = ""
) -> str:
    """Health of a service: of one address if given, otherwise of every node."""
    if not args:
        raise CommandError("require service name")
    name = args[0]

    if address:
        rsp = client.call(name, "Debug.Health", {}, CallOptions(address=address))
        return _text((rsp or {}).get("status"))

    services = registry.get_service(name)
    if not services:
        raise CommandError("Service not found")

    output = ["service  " + services[0].name]
    for service in services:
        output.append("\nversion " + service.version)
        output.append("\nnode\t\taddress:port\t\tstatus")
        for node in service.nodes:
            try:
                rsp = client.call(name, "Debug.Health", {}, CallOptions(address=node.address))
                status = _text((rsp or {}).get("status"))
            except Exception as exc:
                status = str(exc)
            output.append(f"{node.id}\t\t{node.address}\t\t{status}")
    return "\n".join(output)


def query_stats(client: Client, registry: MemoryRegistry, args: Sequence[str]) -> str:
    """Runtime stats of every node of a service."""
    if not args:
        raise CommandError("require service name")
    services = registry.get_service(args[0])
    if not services:
        raise CommandError("Service not found")

    name = services[0].name
    output = ["service  " + name]
    for service in services:
        output.append("\nversion " + service.version)
        output.append("\nnode\t\taddress:port\t\tstarted\tuptime\tmemory\tthreads\tgc")
        for node in service.nodes:
            started = uptime = memory = gc = ""
            threads = 0
            try:
                rsp = client.call(name, "Debug.Stats", {}, CallOptions(address=node.address))
            except Exception:
                rsp = None
            else:
                rsp = rsp or {}
                when = datetime.fromtimestamp(int(rsp.get("started") or 0))
                started = f"{when:%b} {when.day} {when:%H:%M:%S}"
                uptime = _format_duration(int(rsp.get("uptime") or 0) * 1_000_000_000)
                memory = f"{int(rsp.get('memory') or 0) / (1024.0 * 1024.0):.2f}mb"
                gc = _format_duration(int(rsp.get("gc") or 0))
                threads = int(rsp.get("threads") or 0)
            output.append(
                f"{node.id}\t\t{node.address}\t\t{started}\t{uptime}\t{memory}\t{threads}\t{gc}"
            )
    return "\n".join(output)