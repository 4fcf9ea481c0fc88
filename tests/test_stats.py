import json

import pytest

from micrort.stats import (
    Counter,
    Stats,
    StatusRecorder,
    render_page,
    status_class,
)


def test_stats_record_cases():
    stats = Stats()
    stats.start()
    for value in (1, 10, 100):
        stats.record("test", value)
    stats.stop()

    assert len(stats.counters) > 0
    assert "test" in stats.counters[0].status
    assert stats.counters[0].status["test"] == 111
    assert stats.counters[0].total == 111


def test_writer_records_status():
    seen = []
    recorder = StatusRecorder(inner=seen.append, status=0)
    recorder.write_header(200)
    assert recorder.status == 200
    assert seen == [200]


def test_recorder_default_status():
    recorder = StatusRecorder()
    assert recorder.status == 200
    recorder.write_header(503)
    assert recorder.status == 503


@pytest.mark.parametrize(
    "code,expected",
    [(200, "20x"), (204, "20x"), (301, "30x"), (404, "40x"), (500, "50x"), (599, "50x"), (100, "")],
)
def test_status_class(code, expected):
    assert status_class(code) == expected


def test_roll_keeps_window_limit():
    stats = Stats()
    for _ in range(30):
        stats.roll()
    assert len(stats.counters) == 23


def test_roll_new_counter_receives_records():
    stats = Stats()
    stats.record("20x", 3)
    stats.roll()
    stats.record("20x", 2)
    assert stats.counters[0].status == {"20x": 3}
    assert stats.counters[-1].status == {"20x": 2}


def test_start_and_stop_toggle_started():
    stats = Stats()
    stats.start()
    started = stats.started
    stats.start()
    assert stats.started == started
    assert started > 0
    stats.stop()
    assert stats.started == 0
    stats.stop()
    assert stats.started == 0


def test_refresh_runtime_formats():
    stats = Stats()
    stats.refresh_runtime()
    assert stats.memory.endswith("mb")
    assert stats.gc.endswith("ms")
    assert stats.threads >= 1


def test_counter_to_dict():
    counter = Counter(timestamp=42, status={"20x": 2}, total=2)
    assert counter.to_dict() == {
        "timestamp": 42,
        "status_codes": {"20x": 2},
        "total_reqs": 2,
    }


def _call(app, environ=None):
    captured = {}

    def start_response(status, headers, exc_info=None):
        captured["status"] = status
        captured["headers"] = dict(headers)

    body = app(environ or {}, start_response)
    data = b"".join(body)
    close = getattr(body, "close", None)
    if close is not None:
        close()
    return captured, data


@pytest.mark.parametrize(
    "status,expected",
    [("200 OK", "20x"), ("404 Not Found", "40x"), ("502 Bad Gateway", "50x")],
)
def test_middleware_counts_status(status, expected):
    stats = Stats()

    def app(environ, start_response):
        start_response(status, [("Content-Type", "text/plain")])
        return [b"body"]

    captured, data = _call(stats.middleware(app))
    assert captured["status"] == status
    assert data == b"body"
    assert stats.counters[-1].status == {expected: 1}
    assert stats.counters[-1].total == 1


def test_middleware_closes_inner_body():
    stats = Stats()
    closed = []

    class Body:
        def __iter__(self):
            yield b"a"

        def close(self):
            closed.append(True)

    def app(environ, start_response):
        start_response("201 Created", [])
        return Body()

    _call(stats.middleware(app))
    assert closed == [True]
    assert stats.counters[-1].status == {"20x": 1}


def test_handler_json():
    stats = Stats()
    stats.record("20x", 5)
    captured, data = _call(stats.handler, {"CONTENT_TYPE": "application/json"})
    assert captured["status"] == "200 OK"
    assert captured["headers"]["Content-Type"] == "application/json"
    payload = json.loads(data)
    assert set(payload) == {"started", "memory", "threads", "gc_pause", "counters"}
    assert payload["counters"][-1]["status_codes"] == {"20x": 5}
    assert payload["counters"][-1]["total_reqs"] == 5


def test_handler_html():
    stats = Stats()
    captured, data = _call(stats.handler, {})
    assert captured["headers"]["Content-Type"].startswith("text/html")
    assert b"<canvas" in data
    assert data.decode("utf-8") == render_page()


def test_render_page_contents():
    page = render_page()
    assert "<title>Micro Stats</title>" in page
    assert "gc_pause" in page
    assert "application/json" in page