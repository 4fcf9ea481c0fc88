"""A WSGI endpoint that forwards JSON or form encoded RPC requests to services."""

from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any, Callable, Iterable, Optional
from urllib.parse import parse_qs

from .client import CallOptions, Client, MicroError, parse_error
from .helper import request_to_metadata

RPC_ID = "go.micro.rpc"

_SKIPPED_HEADERS = {"Host", "Content-Length"}


class _BadRequest(Exception):
    """The incoming request cannot be turned into a call."""


def _phrase(code: int) -> str:
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return ""


def _canonical(name: str) -> str:
    return "-".join(part.capitalize() for part in name.split("-"))


def _headers(environ: dict) -> dict[str, list[str]]:
    """The request headers by canonical name, each with its list of values."""
    headers: dict[str, list[str]] = {}
    for key, value in environ.items():
        if key.startswith("HTTP_"):
            name = _canonical(key[5:].replace("_", "-").lower())
        elif key == "CONTENT_TYPE" and value:
            name = "Content-Type"
        else:
            continue
        if name in _SKIPPED_HEADERS:
            continue
        headers[name] = [str(value)]
    return headers


def _read_body(environ: dict) -> bytes:
    stream = environ.get("wsgi.input")
    if stream is None:
        return b""
    try:
        length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        length = 0
    if length > 0:
        return stream.read(length)
    return b""


def _decode_first(text: str) -> Any:
    """Decode the first JSON value in text, ignoring what follows it."""
    stripped = text.lstrip()
    if not stripped:
        raise ValueError("EOF")
    value, _ = json.JSONDecoder().raw_decode(stripped)
    return value


def _field(fields: dict[str, Any], name: str) -> str:
    value = fields.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _BadRequest(
            f"json: cannot unmarshal {type(value).__name__} into field {name} of type string"
        )
    return value


def _form(environ: dict, body: bytes, content_type: str) -> dict[str, str]:
    values: dict[str, str] = {}
    if content_type == "application/x-www-form-urlencoded":
        parsed = parse_qs(body.decode("utf-8", errors="replace"), keep_blank_values=True)
        for key, items in parsed.items():
            values.setdefault(key, items[0])
    parsed = parse_qs(environ.get("QUERY_STRING", ""), keep_blank_values=True)
    for key, items in parsed.items():
        values.setdefault(key, items[0])
    return values


class RPCHandler:
    """Passes a JSON or form encoded RPC request on to a service through a client."""

    def __init__(self, client: Client):
        self.client = client

    def _respond(
        self,
        start_response: Callable,
        code: int,
        body: bytes,
        content_type: str = "application/json",
        extra: Optional[list[tuple[str, str]]] = None,
    ) -> Iterable[bytes]:
        headers = [("Content-Type", content_type), ("Content-Length", str(len(body)))]
        headers += extra or []
        start_response(f"{code} {_phrase(code)}".rstrip(), headers)
        return [body]

    def _error(self, start_response: Callable, error: MicroError) -> Iterable[bytes]:
        return self._respond(start_response, error.code, error.to_json().encode("utf-8"))

    def _parse(self, environ: dict, body: bytes) -> tuple[str, str, str, Any]:
        content_type = (environ.get("CONTENT_TYPE") or "").split(";", 1)[0]

        if content_type == "application/json":
            try:
                data = _decode_first(body.decode("utf-8", errors="replace"))
            except ValueError as exc:
                raise _BadRequest(str(exc)) from exc
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise _BadRequest("json: cannot unmarshal non-object into an rpc request")
            fields = {str(k).lower(): v for k, v in data.items()}
            service = _field(fields, "service")
            endpoint = _field(fields, "endpoint") or _field(fields, "method")
            address = _field(fields, "address")
            request = fields.get("request")
            if isinstance(request, str):
                try:
                    request = _decode_first(request)
                except ValueError as exc:
                    raise _BadRequest(f"error decoding request string: {exc}") from exc
            return service, endpoint, address, request

        form = _form(environ, body, content_type)
        service = form.get("service", "")
        endpoint = form.get("endpoint", "") or form.get("method", "")
        address = form.get("address", "")
        try:
            request = _decode_first(form.get("request", ""))
        except ValueError as exc:
            raise _BadRequest(f"error decoding request string: {exc}") from exc
        return service, endpoint, address, request

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        if (environ.get("REQUEST_METHOD") or "GET").upper() != "POST":
            return self._respond(
                start_response,
                405,
                b"Method not allowed\n",
                "text/plain; charset=utf-8",
                [("X-Content-Type-Options", "nosniff")],
            )

        body = _read_body(environ)
        try:
            service, endpoint, address, request = self._parse(environ, body)
            if not service:
                raise _BadRequest("invalid service")
            if not endpoint:
                raise _BadRequest("invalid endpoint")
        except _BadRequest as exc:
            return self._error(start_response, MicroError(RPC_ID, 400, str(exc), _phrase(400)))

        options = CallOptions(address=address)
        options.metadata = dict(request_to_metadata(_headers(environ)))
        try:
            timeout = int((environ.get("HTTP_TIMEOUT") or "").strip())
        except ValueError:
            timeout = 0
        if timeout > 0:
            options.timeout = timeout

        try:
            response = self.client.call(service, endpoint, request, options)
        except Exception as exc:
            error = exc if isinstance(exc, MicroError) else parse_error(str(exc))
            if error.code == 0:
                error = MicroError(
                    RPC_ID, 500, "error during request: " + error.detail, _phrase(500)
                )
            return self._error(start_response, error)

        if isinstance(response, (bytes, bytearray)):
            payload = bytes(response)
        else:
            payload = json.dumps(response, separators=(",", ":")).encode("utf-8")
        return self._respond(start_response, 200, payload)