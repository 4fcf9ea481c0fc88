"""Built-in chat commands understood by the bot.

Each factory takes a CommandContext and returns a Command whose execute
receives the words of the message, the command word first."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from . import commands
from .client import Client
from .commands import CommandError
from .registry import MemoryRegistry

_DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

THREE_LAWS = (
    "1. A robot may not injure a human being or, through inaction, allow a human being to come to harm.",
    "2. A robot must obey the orders given it by human beings except where such orders would conflict with the First Law.",
    "3. A robot must protect its own existence as long as such protection does not conflict with the First or Second Laws.",
)


@dataclass(frozen=True)
class Command:
    """A named chat command with usage text and the function that runs it."""

    name: str
    usage: str
    description: str
    function: Callable[..., str]

    def execute(self, *args: str) -> str:
        return self.function(*args)

    def __str__(self) -> str:
        return self.name


@dataclass
class CommandContext:
    """What the commands need to reach services: a client, a registry and call settings."""

    client: Optional[Client] = None
    registry: Optional[MemoryRegistry] = None
    address: str = ""
    output: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    def require_client(self) -> Client:
        if self.client is None:
            raise CommandError("no client configured")
        return self.client

    def require_registry(self) -> MemoryRegistry:
        if self.registry is None:
            raise CommandError("no registry configured")
        return self.registry


def _rfc1123(now: datetime) -> str:
    zone = now.tzname() or "UTC"
    return (
        f"{_DAYS[now.weekday()]}, {now.day:02d} {_MONTHS[now.month - 1]} "
        f"{now.year} {now:%H:%M:%S} {zone}"
    )


def echo(ctx: CommandContext) -> Command:
    """Return the text after the command word."""

    def run(*args: str) -> str:
        if len(args) < 2:
            return "echo what?"
        return " ".join(args[1:])

    return Command("echo", "echo [text]", "Returns the [text]", run)


def hello(ctx: CommandContext) -> Command:
    """Return a greeting."""
    return Command("hello", "hello", "Returns a greeting", lambda *args: "hey what's up?")


def ping(ctx: CommandContext) -> Command:
    """Return pong."""
    return Command("ping", "ping", "Returns pong", lambda *args: "pong")


def get(ctx: CommandContext) -> Command:
    """Describe a registered service."""

    def run(*args: str) -> str:
        if len(args) < 2:
            return "get what?"
        if args[1] != "service":
            return "unknown command...\nsupported commands: \nget service [name]"
        if len(args) < 3:
            return "require service name"
        return commands.get_service(ctx.require_registry(), args[2:])

    return Command("get", "get service [name]", "Returns a registered service", run)


def health(ctx: CommandContext) -> Command:
    """Report the health of a service."""

    def run(*args: str) -> str:
        if len(args) < 2:
            return "health of what?"
        return commands.query_health(
            ctx.require_client(), ctx.require_registry(), args[1:], ctx.address
        )

    return Command("health", "health [service]", "Returns health of a service", run)


def list_command(ctx: CommandContext) -> Command:
    """List registered services."""

    def run(*args: str) -> str:
        if len(args) < 2:
            return "list what?"
        if args[1] != "services":
            return "unknown command...\nsupported commands: \nlist services"
        return commands.list_services(ctx.require_registry())

    return Command("list", "list services", "Returns a list of registered services", run)


def call(ctx: CommandContext) -> Command:
    """Call a service endpoint and return its response."""

    def run(*args: str) -> str:
        cargs = [arg for arg in args if arg.strip()]
        if len(cargs) < 2:
            return "call what?"
        return commands.call_service(
            ctx.require_client(), cargs[1:], ctx.address, ctx.output, ctx.metadata
        )

    return Command(
        "call",
        "call [service] [endpoint] [request]",
        "Returns the response for a service call",
        run,
    )


def register(ctx: CommandContext) -> Command:
    """Register a service from a JSON definition."""

    def run(*args: str) -> str:
        if len(args) < 2:
            return "register what?"
        if args[1] != "service":
            return "unknown command...\nsupported commands: \nregister service [definition]"
        if len(args) < 3:
            return "require service definition"
        return commands.register_service(ctx.require_registry(), args[2:])

    return Command("register", "register service [definition]", "Registers a service", run)


def deregister(ctx: CommandContext) -> Command:
    """Deregister a service given as a JSON definition."""

    def run(*args: str) -> str:
        if len(args) < 2:
            return "deregister what?"
        if args[1] != "service":
            return (
                "unknown command...\nsupported commands: \nderegister service [definition]"
            )
        if len(args) < 3:
            return "require service definition"
        return commands.deregister_service(ctx.require_registry(), args[2:])

    return Command(
        "deregister", "deregister service [definition]", "Deregisters a service", run
    )


def three_laws(ctx: CommandContext) -> Command:
    """Return the three laws of robotics."""
    return Command(
        "the three laws",
        "the three laws",
        "Returns the three laws of robotics",
        lambda *args: "\n" + "\n".join(THREE_LAWS),
    )


def time_command(ctx: CommandContext) -> Command:
    """Return the server's local time."""

    def run(*args: str) -> str:
        return "Server time is: " + _rfc1123(datetime.now().astimezone())

    return Command("time", "time", "Returns the server time", run)


_FACTORIES: dict[str, Callable[[CommandContext], Command]] = {
    "^echo ": echo,
    "^time$": time_command,
    "^hello$": hello,
    "^ping$": ping,
    "^list ": list_command,
    "^get ": get,
    "^health ": health,
    "^call ": call,
    "^register ": register,
    "^deregister ": deregister,
    "^(the )?three laws( of robotics)?$": three_laws,
}


def builtin_commands(ctx: CommandContext) -> dict[str, Command]:
    """The built-in commands keyed by the pattern a message must match."""
    return {pattern: factory(ctx) for pattern, factory in _FACTORIES.items()}