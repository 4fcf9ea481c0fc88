"""API tokens: sealed, expiring tokens carrying claims, and a client for
the token service that issues, lists, verifies and revokes them."""

from __future__ import annotations

import json
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import requests

from .branca import branca_decode, branca_encode

AGENT = "me0"
DEFAULT_API = "https://micro.mu/token/"
TOKEN_LIFETIME = 7 * 24 * 3600
_KEY_LIMIT = 32


class TokenError(ValueError):
    """Raised when a token is not valid."""


class TokenAPIError(Exception):
    """Raised when the token service refuses a request."""


@dataclass
class Token:
    """An API token: id, expiry in unix seconds, claims and its sealed form."""

    id: str = ""
    expires: int = 0
    claims: dict[str, str] = field(default_factory=dict)
    key: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "Token":
        if not isinstance(data, dict):
            raise TokenError("token claims invalid")
        return cls(
            id=str(data.get("id") or ""),
            expires=int(data.get("expires") or 0),
            claims={str(k): str(v) for k, v in (data.get("claims") or {}).items()},
            key=str(data.get("key") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        """The token's fields, leaving out those that are empty."""
        out: dict[str, Any] = {}
        if self.id:
            out["id"] = self.id
        if self.expires:
            out["expires"] = self.expires
        if self.claims:
            out["claims"] = dict(self.claims)
        if self.key:
            out["key"] = self.key
        return out

    def encode(self, key: str) -> str:
        """Seal the token with key, remember the result and return it."""
        payload = json.dumps(self.to_dict(), separators=(",", ":"))
        sealed = branca_encode(key[:_KEY_LIMIT], payload)
        self.key = sealed
        return sealed

    def validate(self) -> None:
        """Raise TokenError if the token has no id, has expired or has no email claim."""
        if not self.id:
            raise TokenError("token id invalid")
        if self.expires < int(time.time()):
            raise TokenError("token expired")
        if not self.claims.get("email"):
            raise TokenError("token claims invalid")


def new_token() -> Token:
    """A fresh token valid for a week, with no claims yet."""
    return Token(id=str(uuid.uuid1()), expires=int(time.time()) + TOKEN_LIFETIME)


def decode_token(key: str, data: Union[str, bytes]) -> Token:
    """Open a sealed token with key."""
    payload = branca_decode(key[:_KEY_LIMIT], data)
    try:
        fields = json.loads(payload.decode("utf-8"))
    except ValueError as exc:
        raise TokenError(f"invalid token payload: {exc}") from exc
    return Token.from_dict(fields)


class TokenAPI:
    """Client for the token service."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.url = url or os.environ.get("MICRO_TOKEN_API") or DEFAULT_API
        self.api_token = (
            api_token if api_token is not None else os.environ.get("MICRO_TOKEN_KEY", "")
        )
        self.session = session or requests.Session()

    @staticmethod
    def _authorised(rsp: requests.Response) -> None:
        body = rsp.text.strip()
        if rsp.status_code == 401:
            raise TokenAPIError(f"Api error: {body} (require MICRO_TOKEN_KEY)")
        if rsp.status_code != 200:
            raise TokenAPIError(f"API error: {body}")

    def send_pass(self, email: str) -> None:
        """Ask the service to mail a one time pass to email."""
        rsp = self.session.get(
            self.url + "pass", params={"email": email}, headers={"X-Micro-Agent": AGENT}
        )
        if rsp.status_code != 200:
            raise TokenAPIError(rsp.text.strip())

    def generate(self, email: str, password: str) -> str:
        """Exchange an email and one time pass for a new token."""
        rsp = self.session.post(self.url + "generate", data={"email": email, "pass": password})
        if rsp.status_code != 200:
            raise TokenAPIError(rsp.text)
        result = rsp.json()
        token = result.get("token") if isinstance(result, dict) else None
        return token if isinstance(token, str) else ""

    def revoke(self, token: str) -> None:
        """Revoke a token."""
        rsp = self.session.post(
            self.url + "revoke",
            data={"token": token},
            headers={"X-Micro-Token": self.api_token},
        )
        self._authorised(rsp)

    def list(self) -> list[Token]:
        """The tokens issued to the owner of the API token."""
        if not self.api_token:
            raise TokenAPIError("Require MICRO_TOKEN_KEY")
        rsp = self.session.get(self.url + "list", headers={"X-Micro-Token": self.api_token})
        self._authorised(rsp)
        data = rsp.json()
        return [Token.from_dict(t) for t in (data or {}).get("tokens") or []]

    def verify(self, token: str) -> None:
        """Raise TokenAPIError unless the service accepts token."""
        rsp = self.session.post(
            self.url + "verify",
            data={"token": token},
            headers={"X-Micro-Token": self.api_token},
        )
        if rsp.status_code != 200:
            raise TokenAPIError(rsp.text.strip())