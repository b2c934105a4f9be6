from __future__ import annotations

import abc
import ipaddress
from typing import Iterable

import httpx

from . import db
from .settings import Settings


class FirewallError(Exception):
    def __init__(self, status_code: int | None, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Firewall error {status_code}: {message}" if status_code else f"Firewall error: {message}")


class Firewall(abc.ABC):
    """ACL provider: CIDR ranges permitted on a port interval.

    add/remove may fail part way; callers treat any failure as unknown state
    and re-read everything on the next tick.
    """

    @abc.abstractmethod
    def list_acl(self, from_port: int, to_port: int) -> set[str]:
        ...

    @abc.abstractmethod
    def add_acl(self, ranges: Iterable[str], from_port: int, to_port: int) -> None:
        ...

    @abc.abstractmethod
    def remove_acl(self, ranges: Iterable[str], from_port: int, to_port: int) -> None:
        ...

    def close(self) -> None:
        pass


class SqliteFirewall(Firewall):
    """Local ACL table, used when no firewall API is configured."""

    def list_acl(self, from_port: int, to_port: int) -> set[str]:
        return set(db.list_acl_rules(from_port, to_port))

    def add_acl(self, ranges: Iterable[str], from_port: int, to_port: int) -> None:
        db.insert_acl_rules(sorted(ranges), from_port, to_port)

    def remove_acl(self, ranges: Iterable[str], from_port: int, to_port: int) -> None:
        db.delete_acl_rules(sorted(ranges), from_port, to_port)


def _checked(ranges: Iterable[str]) -> list[str]:
    """Sorted ranges; the whole batch is rejected if any entry is not a CIDR."""
    out = sorted(ranges)
    bad = []
    for r in out:
        try:
            ipaddress.ip_network(r, strict=False)
        except ValueError:
            bad.append(r)
    if bad:
        raise FirewallError(None, f"Invalid CIDR range(s): {', '.join(repr(b) for b in bad)}")
    return out


class HttpFirewall(Firewall):
    """Client for a REST firewall API.

    GET  {base}/acl?from_port=&to_port=  -> {"ranges": [...]}
    POST {base}/acl                      {"ranges": [...], "from_port": .., "to_port": ..}
    POST {base}/acl/remove               same body
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"User-Agent": "sgr/0.1"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout_s,
            follow_redirects=False,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise FirewallError(None, f"{type(e).__name__}: {e}") from e
        if resp.status_code >= 300:
            raise FirewallError(resp.status_code, resp.text[:500])
        return resp

    def list_acl(self, from_port: int, to_port: int) -> set[str]:
        resp = self._request("GET", "/acl", params={"from_port": from_port, "to_port": to_port})
        try:
            data = resp.json()
        except ValueError:
            raise FirewallError(resp.status_code, "Invalid JSON") from None
        if not isinstance(data, dict) or not isinstance(data.get("ranges"), list):
            raise FirewallError(resp.status_code, f"Unexpected payload: {data!r}")
        return {str(r) for r in data["ranges"]}

    def add_acl(self, ranges: Iterable[str], from_port: int, to_port: int) -> None:
        body = {"ranges": _checked(ranges), "from_port": from_port, "to_port": to_port}
        self._request("POST", "/acl", json=body)

    def remove_acl(self, ranges: Iterable[str], from_port: int, to_port: int) -> None:
        body = {"ranges": _checked(ranges), "from_port": from_port, "to_port": to_port}
        self._request("POST", "/acl/remove", json=body)


def build_firewall(cfg: Settings) -> Firewall:
    if cfg.firewall_url:
        return HttpFirewall(cfg.firewall_url, token=cfg.firewall_token, timeout_s=cfg.http_timeout_s)
    return SqliteFirewall()
