"""Service clients and the error type services report."""

from __future__ import annotations

import abc
import base64
import json
import math
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Optional

import requests


class MicroError(Exception):
    """An error as reported by a service: id, code, detail and status."""

    def __init__(self, id: str = "", code: int = 0, detail: str = "", status: str = ""):
        super().__init__(detail)
        self.id = id
        self.code = code
        self.detail = detail
        self.status = status

    def to_json(self) -> str:
        return json.dumps(
            {"id": self.id, "code": self.code, "detail": self.detail, "status": self.status},
            separators=(",", ":"),
        )

    def __str__(self) -> str:
        return self.to_json()


def parse_error(text: str) -> MicroError:
    """Parse an error's JSON form; anything else becomes the detail of a code 0 error."""
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return MicroError(detail=text)
    if not isinstance(data, dict):
        return MicroError(detail=text)
    try:
        code = int(data.get("code") or 0)
    except (TypeError, ValueError):
        return MicroError(detail=text)
    return MicroError(
        id=str(data.get("id") or ""),
        code=code,
        detail=str(data.get("detail") or ""),
        status=str(data.get("status") or ""),
    )


@dataclass
class CallOptions:
    """Per-call settings: target address, timeout, retries, metadata and raw output."""

    address: str = ""
    timeout: Optional[float] = None
    retries: int = 0
    metadata: dict[str, str] = field(default_factory=dict)
    raw: bool = False


class Client(abc.ABC):
    """Calls service endpoints and publishes messages."""

    @abc.abstractmethod
    def call(
        self, service: str, endpoint: str, request: Any, options: Optional[CallOptions] = None
    ) -> Any:
        """Call an endpoint; return the decoded JSON response, or bytes when raw."""

    @abc.abstractmethod
    def publish(
        self, topic: str, message: Any, metadata: Optional[dict[str, str]] = None
    ) -> None:
        """Publish a JSON message to a topic."""


class HTTPClient(Client):
    """A client that goes through the HTTP gateway's /rpc endpoint."""

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def _post(self, payload: dict, headers: dict, retries: int, timeout: Optional[float]):
        last: Optional[requests.RequestException] = None
        for _ in range(max(retries, 0) + 1):
            try:
                return self.session.post(
                    self.base_url + "/rpc",
                    data=json.dumps(payload),
                    headers=headers,
                    timeout=timeout,
                )
            except requests.RequestException as exc:
                last = exc
        raise MicroError(
            "go.micro.client",
            500,
            f"error during request: {last}",
            HTTPStatus.INTERNAL_SERVER_ERROR.phrase,
        ) from last

    def call(
        self, service: str, endpoint: str, request: Any, options: Optional[CallOptions] = None
    ) -> Any:
        options = options or CallOptions()
        payload: dict[str, Any] = {"service": service, "endpoint": endpoint, "request": request}
        if options.address:
            payload["address"] = options.address

        headers = dict(options.metadata)
        headers["Content-Type"] = "application/json"
        if options.timeout:
            headers["Timeout"] = str(int(math.ceil(options.timeout)))

        response = self._post(payload, headers, options.retries, options.timeout)
        if response.status_code != 200:
            error = parse_error(response.text)
            if error.code == 0:
                error.code = response.status_code
                try:
                    error.status = HTTPStatus(response.status_code).phrase
                except ValueError:
                    pass
            raise error

        if options.raw:
            return response.content
        if not response.content:
            return None
        return response.json()

    def publish(
        self, topic: str, message: Any, metadata: Optional[dict[str, str]] = None
    ) -> None:
        header = dict(metadata or {})
        header["Content-Type"] = "application/json"
        body = base64.b64encode(json.dumps(message).encode("utf-8")).decode("ascii")
        request = {"topic": topic, "message": {"header": header, "body": body}}
        self.call(
            "go.micro.broker",
            "Broker.Publish",
            request,
            CallOptions(metadata=dict(metadata or {})),
        )