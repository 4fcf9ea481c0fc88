import base64
import queue
import threading

import pytest

from micrort.bot import (
    Bot,
    Conn,
    Event,
    EventType,
    Input,
    help_command,
)
from micrort.botcommands import Command
from micrort.client import Client
from micrort.registry import MemoryRegistry, Node, Service


class FakeInput(Input, Conn):
    name = "test"

    def __init__(self):
        self.sent = queue.Queue()
        self.incoming = queue.Queue()
        self.closed = threading.Event()

    def start(self):
        pass

    def stop(self):
        pass

    def stream(self):
        return self

    def send(self, event):
        if self.closed.is_set():
            raise ConnectionError("connection closed")
        self.sent.put(event)

    def recv(self):
        while not self.closed.is_set():
            try:
                return self.incoming.get(timeout=0.05)
            except queue.Empty:
                continue
        raise ConnectionError("connection closed")

    def close(self):
        self.closed.set()


class FakeClient(Client):
    def __init__(self, exec_reply=None, fail=False):
        self.exec_reply = exec_reply or {}
        self.fail = fail
        self.calls = []

    def call(self, service, endpoint, request, options=None):
        self.calls.append((service, endpoint, request))
        if self.fail:
            raise RuntimeError("boom")
        if endpoint == "Command.Help":
            return {"usage": "weather", "description": "Weather report"}
        return self.exec_reply

    def publish(self, topic, message, metadata=None):
        pass


def echo_command():
    return Command("echo", "test usage", "test description", lambda *a: " ".join(a[1:]))


class Recorder(Conn):
    def __init__(self):
        self.events = []

    def send(self, event):
        self.events.append(event)

    def recv(self):
        raise ConnectionError("no input")

    def close(self):
        pass


def test_bot_echo_round_trip():
    io = FakeInput()
    bot = Bot({"test": io}, {"^echo ": echo_command()})
    bot.start()
    try:
        io.incoming.put(Event(type=EventType.TEXT, data="echo test", meta={}))
        ev = io.sent.get(timeout=1)
        assert ev.data == "test"
    finally:
        bot.stop()
    assert io.closed.is_set()


def test_process_swaps_sender_and_recipient():
    bot = Bot({}, {"^echo ": echo_command()})
    conn = Recorder()
    bot.process(conn, Event(data="echo hi", sender="alice", recipient="bot", meta={"k": 1}))
    [ev] = conn.events
    assert (ev.sender, ev.recipient, ev.data, ev.meta) == ("bot", "alice", "hi", {"k": 1})


def test_process_reports_command_error():
    def broken(*args):
        raise ValueError("bad")

    bot = Bot({}, {"^fail$": Command("fail", "fail", "fails", broken)})
    conn = Recorder()
    bot.process(conn, Event(data="fail"))
    assert conn.events[0].data == "error executing cmd: bad"


def test_unknown_message_gets_no_reply():
    bot = Bot({}, {"^echo ": echo_command()})
    conn = Recorder()
    bot.process(conn, Event(data="nothing here"))
    assert conn.events == []


def test_help_lists_sorted_commands():
    cmds = {
        "^z$": Command("zeta", "zeta", "last", lambda *a: ""),
        "^a$": Command("alpha", "alpha", "first", lambda *a: ""),
    }
    out = help_command(cmds, ["svc - extra"]).execute("help")
    assert out == "\n\nalpha - first\nzeta - last\nsvc - extra"


def test_bot_adds_help_command():
    bot = Bot({}, {"^echo ": echo_command()})
    conn = Recorder()
    bot.process(conn, Event(data="help"))
    assert "test usage - test description" in conn.events[0].data


def make_service_bot(client):
    registry = MemoryRegistry()
    registry.register(
        Service(name="go.micro.bot.weather", nodes=[Node(id="n1", address="a:1")])
    )
    registry.register(Service(name="other.service", nodes=[Node(id="n2", address="b:1")]))
    return Bot({}, {}, client=client, registry=registry)


def test_refresh_services_and_help():
    bot = make_service_bot(FakeClient())
    services = bot.refresh_services()
    assert services == {"go.micro.bot.weather": "weather - Weather report"}
    conn = Recorder()
    bot.process(conn, Event(data="help"))
    assert conn.events[0].data.endswith("weather - Weather report")


def test_service_command_forwarded():
    result = base64.b64encode(b"sunny").decode()
    client = FakeClient(exec_reply={"result": result})
    bot = make_service_bot(client)
    bot.refresh_services()
    conn = Recorder()
    bot.process(conn, Event(data="weather today"))
    assert conn.events[0].data == "sunny"
    assert client.calls[-1] == (
        "go.micro.bot.weather",
        "Command.Exec",
        {"args": ["weather", "today"]},
    )


def test_service_command_error_field():
    bot = make_service_bot(FakeClient(exec_reply={"error": "no data"}))
    bot.refresh_services()
    conn = Recorder()
    bot.process(conn, Event(data="weather"))
    assert conn.events[0].data == "error executing cmd: no data"


def test_service_help_rejects_outside_namespace():
    bot = Bot({}, {}, client=FakeClient())
    with pytest.raises(ValueError, match="not within namespace"):
        bot.service_help("other.service")
    with pytest.raises(ValueError, match="not a service"):
        bot.service_help("go.micro.bot")


def test_non_text_events_ignored():
    io = FakeInput()
    bot = Bot({"test": io}, {"^echo ": echo_command()})
    bot.start()
    try:
        io.incoming.put(Event(data=""))
        io.incoming.put(Event(data="echo second"))
        ev = io.sent.get(timeout=1)
        assert ev.data == "second"
        assert io.sent.empty()
    finally:
        bot.stop()