import io
import json
from wsgiref.util import setup_testing_defaults

import pytest

from micrort.client import Client, MicroError
from micrort.rpchandler import RPCHandler


class RecordingClient(Client):
    def __init__(self, response=None, error=None, expect=None):
        self.response = {} if response is None else response
        self.error = error
        self.expect = expect or {}
        self.calls = []
        self.published = []

    def call(self, service, endpoint, request, options=None):
        self.calls.append((service, endpoint, request, options))
        for key, value in self.expect.items():
            got = options.metadata.get(key)
            if got != value:
                raise RuntimeError(f"Expected {value} for key {key} got {got}")
        if self.error is not None:
            raise self.error
        return self.response

    def publish(self, topic, message, metadata=None):
        self.published.append((topic, message, metadata))


def call_app(app, method="POST", body=b"", content_type="application/json",
             headers=None, query=""):
    environ = {}
    setup_testing_defaults(environ)
    environ.update(
        {
            "REQUEST_METHOD": method,
            "CONTENT_TYPE": content_type,
            "CONTENT_LENGTH": str(len(body)),
            "QUERY_STRING": query,
            "wsgi.input": io.BytesIO(body),
        }
    )
    for name, value in (headers or {}).items():
        environ["HTTP_" + name.upper().replace("-", "_")] = value
    captured = {}

    def start_response(status, response_headers, exc_info=None):
        captured["status"] = status
        captured["headers"] = dict(response_headers)

    out = b"".join(app(environ, start_response))
    return int(captured["status"].split()[0]), captured["headers"], out


def json_body(payload):
    return json.dumps(payload).encode("utf-8")


def test_rpc_handler_forwards_metadata():
    client = RecordingClient(expect={"Foo": "Bar"})
    body = json_body({"service": "test", "endpoint": "TestHandler.Exec", "request": "{}"})
    code, headers, out = call_app(RPCHandler(client), body=body, headers={"Foo": "Bar"})
    assert code == 200, out
    assert out == b"{}"
    assert client.calls[0][:3] == ("test", "TestHandler.Exec", {})


def test_get_is_not_allowed():
    code, _, out = call_app(RPCHandler(RecordingClient()), method="GET")
    assert code == 405
    assert out == b"Method not allowed\n"


def test_missing_service_is_bad_request():
    body = json_body({"endpoint": "Foo.Bar"})
    code, headers, out = call_app(RPCHandler(RecordingClient()), body=body)
    assert code == 400
    error = json.loads(out)
    assert error["id"] == "go.micro.rpc"
    assert error["detail"] == "invalid service"
    assert headers["Content-Type"] == "application/json"


def test_missing_endpoint_is_bad_request():
    body = json_body({"service": "svc"})
    code, _, out = call_app(RPCHandler(RecordingClient()), body=body)
    assert code == 400
    assert json.loads(out)["detail"] == "invalid endpoint"


def test_method_is_used_when_endpoint_missing():
    client = RecordingClient()
    body = json_body({"service": "svc", "method": "Foo.Bar", "request": {"a": 1}})
    code, _, _ = call_app(RPCHandler(client), body=body)
    assert code == 200
    assert client.calls[0][1] == "Foo.Bar"
    assert client.calls[0][2] == {"a": 1}


def test_charset_is_stripped_from_content_type():
    client = RecordingClient(response={"msg": "hi"})
    body = json_body({"service": "svc", "endpoint": "Foo.Bar"})
    code, _, out = call_app(
        RPCHandler(client), body=body, content_type="application/json; charset=UTF-8"
    )
    assert code == 200
    assert json.loads(out) == {"msg": "hi"}


def test_bad_request_string():
    body = json_body({"service": "svc", "endpoint": "Foo.Bar", "request": "{nope"})
    code, _, out = call_app(RPCHandler(RecordingClient()), body=body)
    assert code == 400
    assert json.loads(out)["detail"].startswith("error decoding request string: ")


def test_form_encoded_request():
    client = RecordingClient()
    body = (
        b"service=svc&endpoint=Foo.Bar&address=10.0.0.1%3A9000"
        b"&request=%7B%22a%22%3A1%7D"
    )
    code, _, _ = call_app(
        RPCHandler(client), body=body, content_type="application/x-www-form-urlencoded"
    )
    assert code == 200
    service, endpoint, request, options = client.calls[0]
    assert (service, endpoint, request) == ("svc", "Foo.Bar", {"a": 1})
    assert options.address == "10.0.0.1:9000"


def test_form_without_request_is_bad_request():
    code, _, out = call_app(
        RPCHandler(RecordingClient()),
        body=b"service=svc&endpoint=Foo.Bar",
        content_type="application/x-www-form-urlencoded",
    )
    assert code == 400
    assert json.loads(out)["detail"].startswith("error decoding request string: ")


def test_timeout_header_sets_timeout():
    client = RecordingClient()
    body = json_body({"service": "svc", "endpoint": "Foo.Bar"})
    call_app(RPCHandler(client), body=body, headers={"Timeout": "5"})
    assert client.calls[0][3].timeout == 5


def test_unknown_failure_becomes_internal_error():
    client = RecordingClient(error=RuntimeError("boom"))
    body = json_body({"service": "svc", "endpoint": "Foo.Bar"})
    code, _, out = call_app(RPCHandler(client), body=body)
    assert code == 500
    error = json.loads(out)
    assert error["id"] == "go.micro.rpc"
    assert error["code"] == 500
    assert error["detail"] == "error during request: boom"


def test_service_error_keeps_its_code():
    client = RecordingClient(error=MicroError("svc", 404, "gone", "Not Found"))
    body = json_body({"service": "svc", "endpoint": "Foo.Bar"})
    code, _, out = call_app(RPCHandler(client), body=body)
    assert code == 404
    assert json.loads(out)["detail"] == "gone"


@pytest.mark.parametrize("response", [{"a": [1, 2]}, [1, "x"], "text"])
def test_content_length_matches_body(response):
    client = RecordingClient(response=response)
    body = json_body({"service": "svc", "endpoint": "Foo.Bar"})
    code, headers, out = call_app(RPCHandler(client), body=body)
    assert code == 200
    assert int(headers["Content-Length"]) == len(out)
    assert json.loads(out) == response