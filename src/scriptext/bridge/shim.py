# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Shim - the script-side half of the capability bridge.

Runs in the script's own context and turns each GM_* call into a message
exchange with the Controller. Two matching disciplines coexist:

- Fire-and-collect: value writes, list, tab-open, download, notification.
  One reply per send, no correlation id needed.
- Explicit correlation: GM_xmlhttpRequest. Each request gets a correlation
  id, its callbacks wait in the pending table until the echoed id comes
  back, then the entry is removed.

Values are served from a write-through cache so GM_getValue stays
synchronous while the authoritative store lives in the Controller.

All mutable state (cache, pending table) belongs to one Shim instance.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Union

from scriptext.bridge.protocol import (
    BridgeRequest,
    BridgeResponse,
    CapabilityError,
    CapabilityKind,
    CorrelationIds,
    DeleteValuePayload,
    DownloadPayload,
    FetchPayload,
    IgnorableError,
    ListValuesPayload,
    NotificationPayload,
    OpenTabPayload,
    Payload,
    SetValuePayload,
)
from scriptext.bridge.transport import (
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_SEND_ATTEMPTS,
    Sleep,
    Transport,
    send_with_retry,
)
from scriptext.config import BridgeConfig
from scriptext.metadata import ScriptMetadata


logger = logging.getLogger(__name__)

SCRIPT_HANDLER = "scriptext"
Callback = Callable[..., Any]
StyleSink = Callable[[str], Any]


@dataclass
class ScriptInfo:
    """Static GM_info content."""
    name: str = ""
    description: str = ""
    version: str = ""

    @classmethod
    def from_metadata(cls, meta: ScriptMetadata) -> "ScriptInfo":
        return cls(name=meta.name, description=meta.description, version=meta.version)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "script": {"name": self.name, "description": self.description, "version": self.version},
            "scriptHandler": SCRIPT_HANDLER,
            "version": "1.0",
        }


@dataclass
class FetchCallbacks:
    onloadstart: Optional[Callback] = None
    onload: Optional[Callback] = None
    onerror: Optional[Callback] = None
    onloadend: Optional[Callback] = None

    @classmethod
    def from_details(cls, details: Mapping[str, Any]) -> "FetchCallbacks":
        def pick(name: str) -> Optional[Callback]:
            value = details.get(name)
            return value if callable(value) else None

        return cls(
            onloadstart=pick("onloadstart"),
            onload=pick("onload"),
            onerror=pick("onerror"),
            onloadend=pick("onloadend"),
        )


@dataclass
class ShimState:
    """Per-instance mutable state: value cache and pending fetch callbacks."""
    values: Dict[str, Any] = field(default_factory=dict)
    pending: Dict[str, FetchCallbacks] = field(default_factory=dict)


@dataclass
class XhrResponse:
    """Response object handed to an onload callback."""
    response: Any
    response_text: str
    status: int
    status_text: str
    response_headers: Dict[str, str]
    ready_state: int = 4

    @classmethod
    def from_result(cls, result: Mapping[str, Any]) -> "XhrResponse":
        return cls(
            response=result.get("response"),
            response_text=result.get("responseText", ""),
            status=result.get("status", 0),
            status_text=result.get("statusText", ""),
            response_headers=dict(result.get("responseHeaders") or {}),
        )


class RequestHandle:
    """Returned by xmlhttp_request.

    abort() drops the pending callbacks so nothing fires afterwards. The
    in-flight fetch itself is not interrupted.
    """

    def __init__(self, state: ShimState, correlation_id: str):
        self._state = state
        self.correlation_id = correlation_id

    def abort(self) -> None:
        if self._state.pending.pop(self.correlation_id, None) is not None:
            logger.debug(f"Aborted request {self.correlation_id}")


class Shim:
    """GM_* API emulation for one injected script."""

    def __init__(
        self,
        info: ScriptInfo,
        transport: Transport,
        state: Optional[ShimState] = None,
        attempts: int = DEFAULT_SEND_ATTEMPTS,
        base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        sleep: Sleep = asyncio.sleep,
        style_sink: Optional[StyleSink] = None,
        ids: Optional[CorrelationIds] = None,
    ):
        self.info = info
        self.transport = transport
        self.state = state if state is not None else ShimState()
        self.attempts = attempts
        self.base_delay = base_delay
        self.sleep = sleep
        self.style_sink = style_sink
        self.ids = ids or CorrelationIds()
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def for_script(
        cls,
        meta: ScriptMetadata,
        transport: Transport,
        config: Optional[BridgeConfig] = None,
        **kwargs: Any,
    ) -> "Shim":
        """Build a fresh Shim for one script, taking delivery settings from config."""
        config = config or BridgeConfig()
        return cls(
            ScriptInfo.from_metadata(meta),
            transport,
            attempts=config.send_attempts,
            base_delay=config.retry_base_delay,
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # Messaging
    # -------------------------------------------------------------------------

    async def call(self, kind: CapabilityKind, payload: Payload) -> BridgeResponse:
        """Send one request (with delivery retry) and decode the reply."""
        message = BridgeRequest(kind=kind, payload=payload).to_message()
        reply = await send_with_retry(
            self.transport,
            message,
            attempts=self.attempts,
            base_delay=self.base_delay,
            sleep=self.sleep,
        )
        return BridgeResponse.from_message(reply)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Background bridge call failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for every outstanding background call to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _invoke(self, callback: Optional[Callback], *args: Any) -> None:
        """Run one script callback; its failure never stops the next one."""
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"Script callback {getattr(callback, '__name__', callback)!r} raised: {e}")

    # -------------------------------------------------------------------------
    # Values
    # -------------------------------------------------------------------------

    def get_value(self, key: str, default: Any = None) -> Any:
        if key in self.state.values:
            logger.debug(f"Cache hit for {key}")
            return self.state.values[key]
        return default

    def set_value(self, key: str, value: Any) -> asyncio.Task:
        self.state.values[key] = value
        return self._spawn(self.call(CapabilityKind.SET_VALUE, SetValuePayload(name=key, value=value)))

    def delete_value(self, key: str) -> asyncio.Task:
        self.state.values.pop(key, None)
        return self._spawn(self.call(CapabilityKind.DELETE_VALUE, DeleteValuePayload(name=key)))

    def list_values(self) -> List[str]:
        return list(self.state.values)

    async def load_values(self) -> Dict[str, Any]:
        """Prime the cache from the Controller's store. Local writes win."""
        response = await self.call(CapabilityKind.LIST_VALUES, ListValuesPayload())
        if not response.success:
            raise CapabilityError(response.error)
        for key, value in (response.result or {}).items():
            self.state.values.setdefault(key, value)
        return dict(self.state.values)

    # -------------------------------------------------------------------------
    # Network fetch
    # -------------------------------------------------------------------------

    def xmlhttp_request(self, details: Mapping[str, Any]) -> RequestHandle:
        """
        Start an outbound request through the Controller.

        onloadstart fires before anything is sent. Then exactly one of
        onload(XhrResponse) / onerror(error) fires, followed by onloadend.

        Raises:
            ValueError: If details has no url.
            ProtocolError: If headers or timeout are malformed. No callback fires.
        """
        if not details or not details.get("url"):
            raise ValueError("GM_xmlhttpRequest: URL is required")

        correlation_id = self.ids.next()
        # Malformed details are rejected before any callback is registered
        payload = FetchPayload.from_details(details, correlation_id)
        callbacks = FetchCallbacks.from_details(details)
        self.state.pending[correlation_id] = callbacks
        self._invoke(callbacks.onloadstart)

        self._spawn(self._complete_fetch(correlation_id, payload))
        return RequestHandle(self.state, correlation_id)

    async def _complete_fetch(self, correlation_id: str, payload: FetchPayload) -> None:
        try:
            response = await self.call(CapabilityKind.FETCH, payload)
        except Exception as e:
            callbacks = self.state.pending.pop(correlation_id, None)
            if callbacks is not None:
                self._invoke(callbacks.onerror, e)
                self._invoke(callbacks.onloadend)
            return

        callbacks = self.state.pending.pop(response.correlation_id or correlation_id, None)
        if callbacks is None:
            return
        if response.success:
            self._invoke(callbacks.onload, XhrResponse.from_result(response.result or {}))
        else:
            self._invoke(callbacks.onerror, CapabilityError(response.error))
        self._invoke(callbacks.onloadend)

    # -------------------------------------------------------------------------
    # Other capabilities
    # -------------------------------------------------------------------------

    def add_style(self, css: str) -> Union[Any, IgnorableError]:
        """Inject a stylesheet. Failure is returned as an IgnorableError."""
        if self.style_sink is None:
            return IgnorableError("no document available for style injection")
        try:
            return self.style_sink(css)
        except Exception as e:
            return IgnorableError(str(e))

    def open_in_tab(self, url: str, open_in_background: bool = False) -> asyncio.Task:
        return self._spawn(self.call(
            CapabilityKind.OPEN_TAB,
            OpenTabPayload(url=url, open_in_background=bool(open_in_background)),
        ))

    def download(
        self,
        details: Union[str, Mapping[str, Any]],
        filename: Optional[str] = None,
    ) -> asyncio.Task:
        """Download a URL. Accepts (url, filename) or a details mapping."""
        if isinstance(details, str):
            url, name, callbacks = details, filename or "", {}
        else:
            url = details.get("url", "")
            name = details.get("name") or details.get("filename") or ""
            callbacks = details
        return self._spawn(self._complete_download(DownloadPayload(url=url, name=name), callbacks))

    async def _complete_download(self, payload: DownloadPayload, details: Mapping[str, Any]) -> BridgeResponse:
        onload = details.get("onload") if callable(details.get("onload")) else None
        onerror = details.get("onerror") if callable(details.get("onerror")) else None
        try:
            response = await self.call(CapabilityKind.DOWNLOAD, payload)
        except Exception as e:
            self._invoke(onerror, e)
            return BridgeResponse.failure(str(e))
        if response.success:
            self._invoke(onload)
        else:
            self._invoke(onerror, CapabilityError(response.error))
        return response

    def notification(
        self,
        text_or_details: Union[str, Mapping[str, Any], None],
        title: Optional[str] = None,
    ) -> asyncio.Task:
        if isinstance(text_or_details, str):
            payload = NotificationPayload(text=text_or_details, title=title or "")
        elif isinstance(text_or_details, Mapping):
            payload = NotificationPayload(
                text=text_or_details.get("text") or "",
                title=text_or_details.get("title") or "",
            )
        else:
            payload = NotificationPayload()
        return self._spawn(self.call(CapabilityKind.NOTIFICATION, payload))
