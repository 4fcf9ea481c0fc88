"""The command line and the interactive shell."""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence, TextIO

from . import commands
from .client import Client, HTTPClient
from .commands import CommandError
from .registry import MemoryRegistry, Service

PROMPT = "micro> "
DEFAULT_API = "http://localhost:8080"
ALIASES = {"?": "help", "ls": "list"}


class _ShellExit(Exception):
    """The user asked the shell to stop."""


@dataclass(frozen=True)
class _ShellCommand:
    name: str
    usage: str
    run: Callable[[list[str]], Optional[str]]


class Shell:
    """An interactive prompt running service commands line by line."""

    def __init__(self, client: Client, registry: MemoryRegistry, prompt: str = PROMPT):
        self.client = client
        self.registry = registry
        self.prompt = prompt
        entries = [
            ("quit", "Exit the CLI", self._quit),
            ("exit", "Exit the CLI", self._quit),
            ("call", "Call a service",
             lambda args: commands.call_service(self.client, args)),
            ("list", "List services, peers or routes", self._list),
            ("get", "Get service info",
             lambda args: commands.get_service(self.registry, args)),
            ("services", "List services in the network",
             lambda args: commands.network_services(self.client)),
            ("publish", "Publish a message to a topic", self._publish),
            ("health", "Get service health",
             lambda args: commands.query_health(self.client, self.registry, args)),
            ("stats", "Get service stats",
             lambda args: commands.query_stats(self.client, self.registry, args)),
            ("register", "Register a service",
             lambda args: commands.register_service(self.registry, args)),
            ("deregister", "Deregister a service",
             lambda args: commands.deregister_service(self.registry, args)),
            ("help", "CLI usage", lambda args: self.help()),
        ]
        self._commands = {name: _ShellCommand(name, usage, run) for name, usage, run in entries}

    def _quit(self, args: list[str]) -> None:
        raise _ShellExit()

    def _list(self, args: list[str]) -> str:
        if not args or args[0] == "services":
            return commands.list_services(self.registry)
        if args[0] == "nodes":
            return commands.network_nodes(self.client)
        if args[0] == "routes":
            return commands.network_routes(self.client, {})
        raise CommandError("unknown command")

    def _publish(self, args: list[str]) -> str:
        commands.publish(self.client, args)
        return "ok"

    def help(self) -> str:
        """The list of commands with their usage."""
        names = sorted(self._commands)
        width = max(len(name) for name in names)
        lines = ["Commands:"]
        for name in names:
            lines.append(f"\t {name.ljust(width)} \t\t {self._commands[name].usage}")
        return "\n".join(lines)

    def execute(self, line: str) -> Optional[str]:
        """Run one line; None for a blank line. Raises CommandError for unknown commands."""
        line = line.strip()
        if not line:
            return None
        parts = line.split(" ")
        name = ALIASES.get(parts[0], parts[0])
        command = self._commands.get(name)
        if command is None:
            raise CommandError("unknown command")
        return command.run(parts[1:])

    def run(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> None:
        """Read lines until end of input or quit, printing each result or error."""
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        while True:
            stdout.write(self.prompt)
            stdout.flush()
            line = stdin.readline()
            if not line:
                return
            if not line.strip():
                continue
            try:
                result = self.execute(line)
            except _ShellExit:
                return
            except Exception as exc:
                print(str(exc), file=stdout)
                continue
            print(result or "", file=stdout)


@dataclass
class _Env:
    client: Client
    registry: MemoryRegistry
    registry_file: str = ""

    def load(self) -> None:
        if not self.registry_file:
            return
        path = Path(self.registry_file)
        if not path.exists():
            return
        for data in json.loads(path.read_text(encoding="utf-8") or "[]"):
            self.registry.register(Service.from_dict(data))

    def save(self) -> None:
        if not self.registry_file:
            return
        services = [s.to_dict() for s in self.registry.list_services()]
        Path(self.registry_file).write_text(json.dumps(services, indent=2), encoding="utf-8")


def _env_list(name: str) -> list[str]:
    value = os.environ.get(name, "")
    return [item for item in value.split(",") if item]


def _metadata_arg(ns: argparse.Namespace) -> list[str]:
    return ns.metadata if ns.metadata else _env_list("MICRO_METADATA")


def _add_metadata(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--metadata", action="append", default=None,
        help="A key=value pair to be forwarded as metadata; may be repeated",
    )


def _register(env: _Env, ns: argparse.Namespace) -> str:
    result = commands.register_service(env.registry, ns.args)
    env.save()
    return result


def _deregister(env: _Env, ns: argparse.Namespace) -> str:
    result = commands.deregister_service(env.registry, ns.args)
    env.save()
    return result


def _publish(env: _Env, ns: argparse.Namespace) -> str:
    commands.publish(env.client, ns.args, _metadata_arg(ns))
    return "ok"


def _shell(env: _Env, ns: argparse.Namespace) -> None:
    Shell(env.client, env.registry).run()
    return None


def _routes(env: _Env, ns: argparse.Namespace) -> str:
    filters = {name: getattr(ns, name, "") or "" for name in commands.ROUTE_FILTERS}
    return commands.network_routes(env.client, filters)


def _dns_parser(sub, name: str, help_text: str, with_address: bool, action) -> None:
    env_prefix = f"MICRO_NETWORK_DNS_{name.upper()}_"
    p = sub.add_parser(name, help=help_text)
    if with_address:
        p.add_argument("--address", default=os.environ.get(env_prefix + "ADDRESS", ""))
    else:
        p.add_argument("--type", dest="record_type",
                       default=os.environ.get(env_prefix + "TYPE", "A"))
    p.add_argument("--domain", default=os.environ.get(env_prefix + "DOMAIN", "network.micro.mu"))
    p.add_argument("--token", default=os.environ.get(env_prefix + "TOKEN", ""))
    p.set_defaults(action=action)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="micro", description="A microservice runtime")
    parser.add_argument(
        "--api-address", default=os.environ.get("MICRO_API_ADDRESS") or DEFAULT_API,
        help="Address of the HTTP gateway used to reach services",
    )
    parser.add_argument(
        "--registry-file", default=os.environ.get("MICRO_REGISTRY_FILE", ""),
        help="JSON file holding registered service definitions",
    )
    sub = parser.add_subparsers(dest="command", metavar="command")

    sub.add_parser("cli", help="Run the interactive CLI").set_defaults(action=_shell)

    p = sub.add_parser("call", help="Call a service e.g micro call greeter Say.Hello '{\"name\": \"John\"}'")
    p.add_argument("args", nargs="*")
    p.add_argument("--address", default=os.environ.get("MICRO_ADDRESS", ""))
    p.add_argument("-o", "--output", default=os.environ.get("MICRO_OUTPUT", ""))
    _add_metadata(p)
    p.set_defaults(action=lambda env, ns: commands.call_service(
        env.client, ns.args, ns.address, ns.output, _metadata_arg(ns)))

    sub.add_parser("services", help="List the services in the network").set_defaults(
        action=lambda env, ns: commands.network_services(env.client))

    p = sub.add_parser("publish", help="Publish a message to a topic")
    p.add_argument("args", nargs="*")
    _add_metadata(p)
    p.set_defaults(action=_publish)

    p = sub.add_parser("stats", help="Query the stats of a service")
    p.add_argument("args", nargs="*")
    p.set_defaults(action=lambda env, ns: commands.query_stats(env.client, env.registry, ns.args))

    p = sub.add_parser("health", help="Query service health")
    hsub = p.add_subparsers(dest="health_command", metavar="command", required=True)
    p = hsub.add_parser("check", help="Query the health of a service")
    p.add_argument("args", nargs="*")
    p.add_argument("--address", default=os.environ.get("MICRO_ADDRESS", ""))
    p.set_defaults(action=lambda env, ns: commands.query_health(
        env.client, env.registry, ns.args, ns.address))

    p = sub.add_parser("network", help="Inspect the network")
    nsub = p.add_subparsers(dest="network_command", metavar="command", required=True)
    p = nsub.add_parser("connect", help="connect to the network. specify nodes e.g connect ip:port")
    p.add_argument("args", nargs="*")
    p.set_defaults(action=lambda env, ns: commands.network_connect(env.client, ns.args))
    nsub.add_parser("connections", help="List the immediate connections to the network") \
        .set_defaults(action=lambda env, ns: commands.network_connections(env.client))
    nsub.add_parser("graph", help="Get the network graph") \
        .set_defaults(action=lambda env, ns: commands.network_graph(env.client))
    nsub.add_parser("nodes", help="List nodes in the network") \
        .set_defaults(action=lambda env, ns: commands.network_nodes(env.client))
    p = nsub.add_parser("routes", help="List network routes")
    for name in commands.ROUTE_FILTERS:
        p.add_argument(f"--{name}", default="", help=f"Filter by {name}")
    p.set_defaults(action=_routes)
    nsub.add_parser("services", help="List network services") \
        .set_defaults(action=lambda env, ns: commands.network_services(env.client))
    p = nsub.add_parser("dns", help="Manage network DNS records")
    dsub = p.add_subparsers(dest="dns_command", metavar="command", required=True)
    _dns_parser(dsub, "advertise", "Advertise a new node to the network", True,
                lambda env, ns: commands.network_dns_advertise(
                    env.client, ns.address, ns.domain, ns.token))
    _dns_parser(dsub, "remove", "Remove a node's record", True,
                lambda env, ns: commands.network_dns_remove(
                    env.client, ns.address, ns.domain, ns.token))
    _dns_parser(dsub, "resolve", "Resolve a record", False,
                lambda env, ns: commands.network_dns_resolve(
                    env.client, ns.domain, ns.record_type, ns.token))

    p = sub.add_parser("list", help="List items in registry or network")
    lsub = p.add_subparsers(dest="list_command", metavar="command", required=True)
    lsub.add_parser("nodes", help="List nodes in the network") \
        .set_defaults(action=lambda env, ns: commands.network_nodes(env.client))
    lsub.add_parser("routes", help="List network routes") \
        .set_defaults(action=lambda env, ns: commands.network_routes(env.client, {}))
    lsub.add_parser("services", help="List services in registry") \
        .set_defaults(action=lambda env, ns: commands.list_services(env.registry))

    for name, help_text, action in (
        ("register", "Register a service with JSON definition", _register),
        ("deregister", "Deregister a service with JSON definition", _deregister),
        ("get", "Get service from registry",
         lambda env, ns: commands.get_service(env.registry, ns.args)),
    ):
        p = sub.add_parser(name, help=f"{name.capitalize()} an item in the registry")
        rsub = p.add_subparsers(dest=f"{name}_command", metavar="command", required=True)
        p = rsub.add_parser("service", help=help_text)
        p.add_argument("args", nargs="*")
        p.set_defaults(action=action)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run a command; prints its result, or the error and returns 1."""
    parser = _build_parser()
    try:
        ns = parser.parse_args(argv)
    except SystemExit as exc:
        return int(exc.code or 0)
    if getattr(ns, "action", None) is None:
        parser.print_help()
        return 1

    address = ns.api_address
    if not address.startswith("http"):
        address = "http://" + address
    env = _Env(HTTPClient(address), MemoryRegistry(), ns.registry_file)
    try:
        env.load()
        result = ns.action(env, ns)
    except Exception as exc:
        print(exc)
        return 1
    if ns.action is not _shell:
        print(result if result is not None else "")
    return 0


if __name__ == "__main__":
    sys.exit(main())