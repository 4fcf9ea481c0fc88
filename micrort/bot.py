"""A chat-ops bot: reads messages from inputs, answers built-in commands
and forwards anything else to bot command services in its namespace."""

from __future__ import annotations

import abc
import base64
import binascii
import enum
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from .botcommands import Command
from .client import Client
from .registry import MemoryRegistry

log = logging.getLogger(__name__)

DEFAULT_NAME = "go.micro.bot"
DEFAULT_NAMESPACE = "go.micro.bot"
HELP_PATTERN = "^help$"


class EventType(enum.Enum):
    TEXT = "text"


@dataclass
class Event:
    """A message travelling to or from an input."""

    type: EventType = EventType.TEXT
    data: str = ""
    sender: Any = None
    recipient: Any = None
    meta: dict[str, Any] = field(default_factory=dict)


class Conn(abc.ABC):
    """A connection to a chat input."""

    @abc.abstractmethod
    def send(self, event: Event) -> None: ...

    @abc.abstractmethod
    def recv(self) -> Event: ...

    @abc.abstractmethod
    def close(self) -> None: ...


class Input(abc.ABC):
    """A chat input such as a messaging service."""

    name: str = "input"

    @abc.abstractmethod
    def start(self) -> None: ...

    @abc.abstractmethod
    def stop(self) -> None: ...

    @abc.abstractmethod
    def stream(self) -> Conn: ...


def help_command(
    commands: Mapping[str, Command], service_commands: Optional[Iterable[str]] = None
) -> Command:
    """A help command listing the given commands by name, then the service commands."""
    ordered = sorted(commands.values(), key=lambda c: c.name)
    extra = list(service_commands or [])

    def run(*args: str) -> str:
        response = ["\n"]
        response += [f"{c.usage} - {c.description}" for c in ordered]
        response += extra
        return "\n".join(response)

    return Command("help", "help", "Displays help for all known commands", run)


def _decode_result(result: Any) -> str:
    if result is None:
        return ""
    if isinstance(result, (bytes, bytearray)):
        return bytes(result).decode("utf-8", errors="replace")
    text = str(result)
    try:
        return base64.b64decode(text, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return text


class Bot:
    """Serves commands over a set of inputs."""

    def __init__(
        self,
        inputs: Mapping[str, Input],
        commands: Mapping[str, Command],
        client: Optional[Client] = None,
        registry: Optional[MemoryRegistry] = None,
        namespace: str = DEFAULT_NAMESPACE,
        refresh_interval: float = 30.0,
    ):
        self.inputs = dict(inputs)
        self.client = client
        self.registry = registry
        self.namespace = namespace
        self.refresh_interval = refresh_interval
        self._lock = threading.RLock()
        self._commands = dict(commands)
        self._commands[HELP_PATTERN] = help_command(commands)
        self._base_commands = dict(self._commands)
        self._services: dict[str, str] = {}
        self._exit = threading.Event()
        self._threads: list[threading.Thread] = []
        self._conns: list[Conn] = []

    @property
    def commands(self) -> dict[str, Command]:
        with self._lock:
            return dict(self._commands)

    @property
    def services(self) -> dict[str, str]:
        with self._lock:
            return dict(self._services)

    def _reply(self, conn: Conn, event: Event, data: str) -> None:
        conn.send(
            Event(
                type=EventType.TEXT,
                data=data,
                sender=event.recipient,
                recipient=event.sender,
                meta=event.meta,
            )
        )

    def process(self, conn: Conn, event: Event) -> None:
        """Answer one text message, if any command or service handles it."""
        args = event.data.split(" ")
        with self._lock:
            commands = list(self._commands.items())
            services = dict(self._services)

        for pattern, command in commands:
            try:
                if not re.search(pattern, event.data):
                    continue
            except re.error:
                continue
            try:
                response = command.execute(*args)
            except Exception as exc:
                response = "error executing cmd: " + str(exc)
            self._reply(conn, event, response)
            return

        service = f"{self.namespace}.{args[0]}"
        if service not in services or self.client is None:
            return

        try:
            rsp = self.client.call(service, "Command.Exec", {"args": args}) or {}
        except Exception as exc:
            response = "error executing cmd: " + str(exc)
        else:
            error = rsp.get("error")
            if error:
                response = "error executing cmd: " + str(error)
            else:
                response = _decode_result(rsp.get("result"))
        self._reply(conn, event, response)

    def _run(self, io: Input) -> None:
        log.info("[loop] connecting to %s", io.name)
        conn = io.stream()
        with self._lock:
            self._conns.append(conn)
        try:
            while not self._exit.is_set():
                event = conn.recv()
                if event.type != EventType.TEXT or not event.data:
                    continue
                self.process(conn, event)
        finally:
            with self._lock:
                if conn in self._conns:
                    self._conns.remove(conn)
            if self._exit.is_set():
                log.info("[loop] closing %s", io.name)
                conn.close()

    def _loop(self, io: Input) -> None:
        log.info("[loop] starting %s", io.name)
        while not self._exit.is_set():
            try:
                self._run(io)
            except Exception as exc:
                if self._exit.is_set():
                    break
                log.warning("[loop] error %s", exc)
                self._exit.wait(1.0)
        log.info("[loop] exiting %s", io.name)

    def service_help(self, service: str) -> str:
        """Ask a bot command service for its usage line."""
        if not service.startswith(self.namespace):
            raise ValueError(f"{service} not within namespace")
        if not service[len(self.namespace):]:
            raise ValueError(f"{service} not a service")
        if self.client is None:
            raise RuntimeError("no client configured")
        rsp = self.client.call(service, "Command.Help", {}) or {}
        return f"{rsp.get('usage', '')} - {rsp.get('description', '')}"

    def refresh_services(self) -> dict[str, str]:
        """Rediscover command services and rebuild the help command."""
        if self.registry is None:
            return {}
        services: dict[str, str] = {}
        for service in self.registry.list_services():
            try:
                services[service.name] = self.service_help(service.name)
            except Exception:
                continue
        with self._lock:
            self._commands[HELP_PATTERN] = help_command(
                self._base_commands, list(services.values())
            )
            self._services = services
        return dict(services)

    def _watch(self) -> None:
        try:
            self.refresh_services()
        except Exception as exc:
            log.warning("error listing services: %s", exc)
        while not self._exit.wait(self.refresh_interval):
            try:
                self.refresh_services()
            except Exception as exc:
                log.warning("error listing services: %s", exc)

    def _spawn(self, target, *args) -> None:
        thread = threading.Thread(target=target, args=args, daemon=True)
        self._threads.append(thread)
        thread.start()

    def start(self) -> None:
        log.info("starting")
        self._exit.clear()
        for io in self.inputs.values():
            log.info("starting input %s", io.name)
            io.start()
            self._spawn(self._loop, io)
        if self.registry is not None:
            self._spawn(self._watch)

    def stop(self) -> None:
        log.info("stopping")
        self._exit.set()
        with self._lock:
            conns = list(self._conns)
        for conn in conns:
            try:
                conn.close()
            except Exception as exc:
                log.warning("%s", exc)
        for io in self.inputs.values():
            log.info("stopping input %s", io.name)
            try:
                io.stop()
            except Exception as exc:
                log.warning("%s", exc)