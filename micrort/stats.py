"""Request statistics: rolling per-window status counters, a WSGI
middleware that feeds them, and a handler that serves them as JSON or
as a small self-refreshing HTML page."""

from __future__ import annotations

import gc
import json
import sys
import threading
import time
import tracemalloc
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Optional

try:
    import resource
except ImportError:  # pragma: no cover - not available on Windows
    resource = None  # type: ignore[assignment]

WINDOW_SECONDS = 5.0
TOTAL_WINDOWS = 24

_gc_lock = threading.Lock()
_gc_pause_ns = 0
_gc_started_ns: Optional[int] = None
_gc_timer_installed = False


def _gc_callback(phase: str, info: dict) -> None:
    global _gc_pause_ns, _gc_started_ns
    if phase == "start":
        _gc_started_ns = time.perf_counter_ns()
    elif _gc_started_ns is not None:
        _gc_pause_ns += time.perf_counter_ns() - _gc_started_ns
        _gc_started_ns = None


def _install_gc_timer() -> None:
    global _gc_timer_installed
    with _gc_lock:
        if not _gc_timer_installed:
            gc.callbacks.append(_gc_callback)
            _gc_timer_installed = True


def _allocated_bytes() -> int:
    if tracemalloc.is_tracing():
        return tracemalloc.get_traced_memory()[0]
    if resource is None:
        return 0
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is reported in bytes on macOS and kilobytes elsewhere
    return peak if sys.platform == "darwin" else peak * 1024


def status_class(status: int) -> str:
    """Bucket an HTTP status code into "20x", "30x", "40x" or "50x"."""
    if status >= 500:
        return "50x"
    if status >= 400:
        return "40x"
    if status >= 300:
        return "30x"
    if status >= 200:
        return "20x"
    return ""


@dataclass
class Counter:
    """Request counts for one time window."""

    timestamp: int = field(default_factory=lambda: int(time.time()))
    status: dict[str, int] = field(default_factory=dict)
    total: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "status_codes": dict(self.status),
            "total_reqs": self.total,
        }


@dataclass
class StatusRecorder:
    """Remembers the status code passed on to an inner header writer."""

    inner: Optional[Callable[[int], Any]] = None
    status: int = 200

    def write_header(self, code: int) -> None:
        if self.inner is not None:
            self.inner(code)
        self.status = code


class _RecordingBody:
    """Response body wrapper that records the status once the body is closed."""

    def __init__(self, result: Iterable[bytes], on_close: Callable[[], None]):
        self._result = result
        self._on_close = on_close
        self._closed = False

    def __iter__(self) -> Iterator[bytes]:
        yield from self._result

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            close = getattr(self._result, "close", None)
            if close is not None:
                close()
        finally:
            self._on_close()


class Stats:
    """Rolling window request statistics plus process runtime figures."""

    def __init__(self, window: float = WINDOW_SECONDS, total: int = TOTAL_WINDOWS):
        _install_gc_timer()
        self.window = window
        self.total = total
        self.started = 0
        self.memory = ""
        self.threads = 0
        self.gc = ""
        self.counters: list[Counter] = [Counter()]
        self._lock = threading.RLock()
        self._running = False
        self._exit = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._ticks = 0
        self.refresh_runtime()

    def refresh_runtime(self) -> None:
        """Update the memory, thread and garbage collection figures."""
        with self._lock:
            self.threads = threading.active_count()
            self.memory = f"{_allocated_bytes() / (1024 * 1024):.2f}mb"
            self.gc = f"{_gc_pause_ns / (1000 * 1000):.3f}ms"

    def roll(self) -> None:
        """Open a new window, dropping the oldest once the limit is reached."""
        with self._lock:
            self.counters.append(Counter())
            if len(self.counters) >= self.total:
                self.counters = self.counters[1:]
            self._ticks += 1
            refresh = self._ticks >= 2
            if refresh:
                self._ticks = 0
        if refresh:
            self.refresh_runtime()

    def _run(self, exit_event: threading.Event) -> None:
        while not exit_event.wait(self.window):
            self.roll()

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self.started = int(time.time())
            self._exit = threading.Event()
            self._thread = threading.Thread(
                target=self._run, args=(self._exit,), name="stats", daemon=True
            )
            self._running = True
            self._thread.start()

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._exit.set()
            thread = self._thread
            self._thread = None
            self._running = False
            self.started = 0
        if thread is not None:
            thread.join(timeout=self.window + 1)

    def record(self, code: str, count: int) -> None:
        """Add count requests under status class code in the current window."""
        with self._lock:
            counter = self.counters[-1]
            counter.status[code] = counter.status.get(code, 0) + count
            counter.total += count

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "started": self.started,
                "memory": self.memory,
                "threads": self.threads,
                "gc_pause": self.gc,
                "counters": [c.to_dict() for c in self.counters],
            }

    def middleware(self, app: Callable) -> Callable:
        """Wrap a WSGI application so every response is counted."""

        def wrapped(environ, start_response):
            recorder = StatusRecorder()

            def recording_start_response(status, headers, exc_info=None):
                recorder.write_header(int(status.split(None, 1)[0]))
                return start_response(status, headers, exc_info)

            result = app(environ, recording_start_response)
            return _RecordingBody(
                result, lambda: self.record(status_class(recorder.status), 1)
            )

        return wrapped

    def handler(self, environ, start_response) -> list[bytes]:
        """WSGI app serving the stats as JSON or as an HTML dashboard."""
        content_type = environ.get("CONTENT_TYPE", "")
        if content_type == "application/json":
            body = json.dumps(self.to_dict()).encode("utf-8")
        else:
            content_type = "text/html; charset=utf-8"
            body = render_page().encode("utf-8")
        start_response(
            "200 OK",
            [("Content-Type", content_type), ("Content-Length", str(len(body)))],
        )
        return [body]


_PAGE = """<!DOCTYPE html>
<html>
<head>
<title>Micro Stats</title>
<style>
body { font-family: sans-serif; margin: 0; }
nav { background: #222; color: #eee; padding: 12px 24px; font-size: 18px; }
.container { display: flex; gap: 24px; padding: 24px; }
.side { width: 30%; }
.main { flex: 1; }
table { border-collapse: collapse; width: 100%; margin-bottom: 16px; }
caption { text-align: left; color: #666; padding: 4px 0; }
th, td { border: 1px solid #ccc; padding: 6px; text-align: left; }
#update { color: #666; font-size: 12px; }
</style>
</head>
<body>
<nav>Micro</nav>
<div class="container">
  <div class="side">
    <div id="update"></div>
    <table>
      <caption>Info</caption>
      <tr><th>Started</th><td id="started"></td></tr>
      <tr><th>Uptime</th><td id="uptime"></td></tr>
      <tr><th>Memory</th><td id="memory"></td></tr>
      <tr><th>Threads</th><td id="threads"></td></tr>
      <tr><th>GC</th><td id="gc"></td></tr>
    </table>
    <table>
      <caption>Requests</caption>
      <tr><th>Total</th><td id="total"></td></tr>
      <tr><th>20x</th><td id="req-20x"></td></tr>
      <tr><th>40x</th><td id="req-40x"></td></tr>
      <tr><th>50x</th><td id="req-50x"></td></tr>
    </table>
  </div>
  <div class="main">
    <h3>Request Load</h3>
    <canvas id="chart" width="800" height="300"></canvas>
    <div id="legend"></div>
  </div>
</div>
<script>
var series = [["20x", "#2a7"], ["40x", "#e92"], ["50x", "#d33"]];

function setText(id, value) {
  document.getElementById(id).textContent = value;
}

function pad(n) { return n < 10 ? "0" + n : "" + n; }

function formatUptime(seconds) {
  if (seconds <= 3600) { return seconds + "s"; }
  var h = Math.floor(seconds / 3600);
  var m = Math.floor((seconds - h * 3600) / 60);
  var s = Math.floor(seconds - h * 3600 - m * 60);
  return pad(h) + ":" + pad(m) + ":" + pad(s);
}

function drawChart(counters) {
  var canvas = document.getElementById("chart");
  var ctx = canvas.getContext("2d");
  ctx.clearRect(0, 0, canvas.width, canvas.height);
  var max = 1;
  counters.forEach(function (c) {
    series.forEach(function (s) { max = Math.max(max, c.status_codes[s[0]] || 0); });
  });
  var step = counters.length > 1 ? canvas.width / (counters.length - 1) : canvas.width;
  var legend = [];
  series.forEach(function (s) {
    ctx.strokeStyle = s[1];
    ctx.beginPath();
    var last = 0;
    counters.forEach(function (c, i) {
      last = c.status_codes[s[0]] || 0;
      var y = canvas.height - (last / max) * (canvas.height - 10);
      if (i === 0) { ctx.moveTo(0, y); } else { ctx.lineTo(i * step, y); }
    });
    ctx.stroke();
    legend.push(s[0] + " " + last);
  });
  setText("legend", legend.join("   "));
}

function loadStats() {
  fetch(window.location.href, { headers: { "Content-Type": "application/json" } })
    .then(function (rsp) { return rsp.json(); })
    .then(function (data) {
      var started = new Date(data.started * 1000);
      var uptime = (new Date() - started) / 1000;
      setText("update", "Last updated " + new Date().toUTCString());
      setText("started", started.toUTCString());
      setText("uptime", formatUptime(uptime));
      setText("memory", data.memory);
      setText("threads", data.threads);
      setText("gc", data.gc_pause);
      var totals = { "total": 0, "20x": 0, "40x": 0, "50x": 0 };
      data.counters.forEach(function (c) {
        totals.total += c.total_reqs;
        series.forEach(function (s) { totals[s[0]] += c.status_codes[s[0]] || 0; });
      });
      setText("total", totals.total);
      setText("req-20x", totals["20x"]);
      setText("req-40x", totals["40x"]);
      setText("req-50x", totals["50x"]);
      drawChart(data.counters);
    });
  setTimeout(loadStats, 5000);
}

loadStats();
</script>
</body>
</html>
"""


def render_page() -> str:
    """Return the stats dashboard page."""
    return _PAGE