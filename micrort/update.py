"""Update notifications: poll the release endpoint and report builds newer
than the running one as runtime update events."""

from __future__ import annotations

import enum
import logging
import queue
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Iterator, Optional

import requests

log = logging.getLogger(__name__)

DEFAULT_TICK = 60.0
DEFAULT_URL = "https://micro.mu/update"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_RFC3339 = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)
_INTEGER = re.compile(r"[+-]?\d+")
_CLOSED = object()


class NotifierError(Exception):
    """Raised when the update endpoint cannot be polled or gives a bad answer."""


class EventType(enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class RuntimeEvent:
    """Something that happened to a service the runtime manages."""

    type: EventType
    timestamp: datetime
    version: str
    service: str = ""


@dataclass
class Build:
    """The latest build as published by the update endpoint."""

    commit: str = ""
    image: str = ""
    release: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Build":
        return cls(
            commit=str(data.get("commit") or ""),
            image=str(data.get("image") or ""),
            release=str(data.get("release") or ""),
        )


def _parse_rfc3339(text: str) -> datetime:
    match = _RFC3339.match(text)
    if not match:
        raise ValueError(f"cannot parse {text!r} as an RFC3339 time")
    date, clock, fraction, zone = match.groups()
    micros = (fraction or ".")[1:7].ljust(6, "0")
    if zone in ("Z", "z"):
        zone = "+00:00"
    return datetime.fromisoformat(f"{date}T{clock}.{micros}{zone}")


def _unix_seconds(moment: datetime) -> int:
    return (moment - _EPOCH) // timedelta(seconds=1)


class Notifier:
    """Polls a URL every tick and emits an update event when a newer build appears."""

    def __init__(
        self,
        url: str,
        tick: float,
        version: str,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.tick = tick
        self.version = version
        self.session = session or requests.Session()
        self._lock = threading.Lock()
        self._running = False
        self._closed = threading.Event()
        self._events: queue.Queue = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    def __str__(self) -> str:
        return "default"

    def poll(self) -> Build:
        """Fetch the latest build description."""
        try:
            rsp = self.session.get(self.url, timeout=30)
        except requests.RequestException as exc:
            log.debug("Notifier error polling updates: %s", exc)
            raise NotifierError(f"error polling updates: {exc}") from exc
        if rsp.status_code != 200:
            log.debug("Notifier error unexpected http response: %s", rsp.status_code)
            raise NotifierError(f"unexpected http response: {rsp.status_code}")
        try:
            data = rsp.json()
        except ValueError as exc:
            log.debug("Notifier error unmarshalling response: %s", exc)
            raise NotifierError(f"error decoding response: {exc}") from exc
        if not isinstance(data, dict):
            raise NotifierError("unexpected response body")
        return Build.from_dict(data)

    def check(self) -> Optional[RuntimeEvent]:
        """Poll once; return an update event if the published build is newer."""
        build = self.poll()
        build_time = _parse_rfc3339(build.image)
        if not _INTEGER.fullmatch(self.version):
            raise ValueError(f"invalid build version {self.version!r}")
        try:
            current = _EPOCH + timedelta(seconds=int(self.version))
        except OverflowError as exc:
            raise ValueError(f"invalid build version {self.version!r}") from exc
        if build_time <= current:
            return None
        version = str(_unix_seconds(build_time))
        self.version = version
        return RuntimeEvent(EventType.UPDATE, datetime.now(timezone.utc), version)

    def _run(self, closed: threading.Event, events: queue.Queue) -> None:
        while not closed.wait(self.tick):
            log.debug("Notifier polling for new update: %s", self.url)
            try:
                event = self.check()
            except (NotifierError, ValueError) as exc:
                log.debug("Notifier error checking for updates: %s", exc)
                continue
            if event is not None and not closed.is_set():
                events.put(event)

    @staticmethod
    def _drain(events: queue.Queue) -> Iterator[RuntimeEvent]:
        while True:
            item = events.get()
            if item is _CLOSED:
                events.put(_CLOSED)
                return
            yield item

    def notify(self) -> Iterator[RuntimeEvent]:
        """Start polling if needed and return the stream of update events."""
        with self._lock:
            if not self._running:
                self._running = True
                self._closed = threading.Event()
                self._events = queue.Queue()
                self._thread = threading.Thread(
                    target=self._run,
                    args=(self._closed, self._events),
                    name="update-notifier",
                    daemon=True,
                )
                self._thread.start()
            events = self._events
        return self._drain(events)

    def close(self) -> None:
        """Stop polling and end the event stream."""
        with self._lock:
            if not self._running:
                return
            self._closed.set()
            self._events.put(_CLOSED)
            self._running = False
            thread = self._thread
            self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.tick + 35)


def new_notifier(version: str) -> Notifier:
    """A notifier polling the default URL at the default interval."""
    return Notifier(DEFAULT_URL, DEFAULT_TICK, version)


def fan_out(events: Iterable[RuntimeEvent], services: Iterable[str]) -> Iterator[RuntimeEvent]:
    """Repeat every event once for each of the given services."""
    names = list(services)
    for event in events:
        for name in names:
            yield RuntimeEvent(
                type=event.type,
                timestamp=event.timestamp,
                version=event.version,
                service=name,
            )