"""Shared fixtures: sample scripts and fake host facilities."""

import asyncio
from typing import Any, Dict, List, Mapping, Optional

import pytest

from scriptext.bridge.controller import Controller
from scriptext.bridge.host import FetchResponse, HostFacilities, InMemoryStore
from scriptext.bridge.transport import MessageBus
from scriptext.metadata import ScriptMetadata


SAMPLE_SCRIPT = """// ==UserScript==
// @name         Foo Helper
// @description  Adds helpers to example.com
// @version      2.1.0
// @author       someone
// @match        https://example.com/*
// @include      http*://legacy.example.org
// @exclude      https://example.com/private/*
// @grant        GM_setValue
// @grant        GM_getValue
// @grant        GM_xmlhttpRequest
// @connect      api.example.net
// @run-at       document-start
// ==/UserScript==

(function () {
  console.log('hello');
})();
"""


class RecordingDownloads:
    def __init__(self, error: Optional[Exception] = None):
        self.calls: List[tuple] = []
        self.error = error

    async def download(self, url: str, filename: str) -> None:
        self.calls.append((url, filename))
        if self.error:
            raise self.error


class RecordingTabs:
    def __init__(self):
        self.calls: List[tuple] = []

    async def create(self, url: str, active: bool = True) -> None:
        self.calls.append((url, active))


class RecordingNotifications:
    def __init__(self, error: Optional[Exception] = None):
        self.calls: List[tuple] = []
        self.error = error

    async def create(self, title: str, message: str, icon_url: str) -> None:
        self.calls.append((title, message, icon_url))
        if self.error:
            raise self.error


class FakeRegistry:
    """Records registrations; optionally fails or yields mid-registration."""

    def __init__(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.rules: List[List[Dict[str, Any]]] = []
        self.worlds: List[tuple] = []
        self.error = error
        self.delay = delay

    async def configure_world(self, messaging: bool, csp: str) -> None:
        self.worlds.append((messaging, csp))

    async def register(self, rules: List[Dict[str, Any]]) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        self.rules.append(rules)


class FakePermissions:
    def __init__(self, granted: bool = True):
        self.granted = granted
        self.checks = 0

    async def contains(self, permission: str) -> bool:
        self.checks += 1
        return self.granted


class ScriptedFetcher:
    """Returns canned responses keyed by URL, in any completion order."""

    def __init__(self, responses: Optional[Mapping[str, FetchResponse]] = None,
                 delays: Optional[Mapping[str, float]] = None):
        self.responses = dict(responses or {})
        self.delays = dict(delays or {})
        self.calls: List[Dict[str, Any]] = []

    async def fetch(self, url, method="GET", headers=None, body=None,
                    credentials="include", timeout=None) -> FetchResponse:
        self.calls.append({
            "url": url, "method": method, "headers": dict(headers or {}),
            "body": body, "credentials": credentials, "timeout": timeout,
        })
        if url in self.delays:
            await asyncio.sleep(self.delays[url])
        if url not in self.responses:
            raise ConnectionError(f"connection refused: {url}")
        return self.responses[url]


@pytest.fixture
def sample_script() -> str:
    return SAMPLE_SCRIPT


@pytest.fixture
def meta() -> ScriptMetadata:
    return ScriptMetadata(
        name="Foo Helper",
        description="Adds helpers",
        version="2.1.0",
        matches=["https://example.com/*"],
        excludes=["https://example.com/private/*"],
        grants=["GM_setValue", "GM_getValue"],
    )


@pytest.fixture
def host() -> HostFacilities:
    return HostFacilities(
        storage=InMemoryStore(),
        fetcher=ScriptedFetcher(),
        downloads=RecordingDownloads(),
        tabs=RecordingTabs(),
        notifications=RecordingNotifications(),
        registry=FakeRegistry(),
        permissions=FakePermissions(granted=True),
        messaging=MessageBus(),
    )


@pytest.fixture
def controller(meta, host) -> Controller:
    return Controller(meta, host)
