# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Host facilities used by the Controller.

The privileged context owns storage, network access, downloads, tabs,
notifications, and script registration. Each is a small protocol here so the
Controller can run against the real implementations below (in-memory or JSON
file storage, httpx for fetch) or against test doubles.
"""

import json
import logging
from http.cookiejar import CookieJar, DefaultCookiePolicy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

import httpx

from scriptext.bridge.transport import MessageBus


logger = logging.getLogger(__name__)


# =============================================================================
# Storage
# =============================================================================

class KeyValueStore(Protocol):
    async def get(self, keys: Optional[Sequence[str]] = None) -> Dict[str, Any]: ...

    async def set(self, items: Mapping[str, Any]) -> None: ...

    async def remove(self, key: str) -> None: ...


class InMemoryStore:
    """Key/value store held in a dict."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = dict(data or {})

    async def get(self, keys: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        if keys is None:
            return dict(self.data)
        return {k: self.data[k] for k in keys if k in self.data}

    async def set(self, items: Mapping[str, Any]) -> None:
        self.data.update(items)

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore(InMemoryStore):
    """Key/value store persisted to a JSON file after every write."""

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()
        super().__init__(self._load())

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, TypeError):
            # Corrupted store file - start empty
            logger.warning(f"Ignoring unreadable store file: {self.path}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(self.data, f, indent=2)

    async def set(self, items: Mapping[str, Any]) -> None:
        await super().set(items)
        self._save()

    async def remove(self, key: str) -> None:
        await super().remove(key)
        self._save()


# =============================================================================
# Network
# =============================================================================

@dataclass
class FetchResponse:
    """Raw outcome of one outbound request."""
    status: int
    status_text: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")


class Fetcher(Protocol):
    async def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
        credentials: str = "include",
        timeout: Optional[float] = None,
    ) -> FetchResponse: ...


class HttpxFetcher:
    """
    Fetcher backed by httpx.

    Requests with credentials "include" share one client and its cookie jar;
    "omit" requests go through a separate client whose jar refuses every
    cookie, so concurrent anonymous requests never see each other's cookies.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 30.0):
        self._transport = transport
        self._timeout = timeout
        self._clients: Dict[str, httpx.AsyncClient] = {}

    def _client(self, credentials: str) -> httpx.AsyncClient:
        if credentials not in self._clients:
            cookies = CookieJar(policy=DefaultCookiePolicy(allowed_domains=[])) if credentials == "omit" else None
            self._clients[credentials] = httpx.AsyncClient(
                transport=self._transport,
                cookies=cookies,
                timeout=httpx.Timeout(self._timeout, connect=5.0),
                follow_redirects=True,
            )
        return self._clients[credentials]

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
        credentials: str = "include",
        timeout: Optional[float] = None,
    ) -> FetchResponse:
        client = self._client(credentials)
        if isinstance(body, str):
            body = body.encode("utf-8")
        response = await client.request(
            method,
            url,
            headers=dict(headers or {}),
            content=body,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        return FetchResponse(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers={k.lower(): v for k, v in response.headers.items()},
            body=response.content,
        )

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()


# =============================================================================
# Browser facilities
# =============================================================================

class Downloads(Protocol):
    async def download(self, url: str, filename: str) -> None: ...


class Tabs(Protocol):
    async def create(self, url: str, active: bool = True) -> None: ...


class Notifications(Protocol):
    async def create(self, title: str, message: str, icon_url: str) -> None: ...


class ScriptRegistry(Protocol):
    """Script-injection registration (the userScripts facility)."""

    async def configure_world(self, messaging: bool, csp: str) -> None: ...

    async def register(self, rules: List[Dict[str, Any]]) -> None: ...


class PermissionGate(Protocol):
    async def contains(self, permission: str) -> bool: ...


@dataclass
class HostFacilities:
    """Everything the Controller may touch in the privileged context."""
    storage: KeyValueStore
    fetcher: Fetcher
    downloads: Downloads
    tabs: Tabs
    notifications: Notifications
    registry: ScriptRegistry
    permissions: PermissionGate
    messaging: MessageBus = field(default_factory=MessageBus)
