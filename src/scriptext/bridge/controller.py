# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Controller - the privileged side of the capability bridge.

Owns two things:
- Registration of the injection rule (Shim first, then the script body),
  at most once per process lifetime.
- Execution of capability requests sent by the Shim. Requests are dispatched
  through a table of handlers, one per CapabilityKind. Any handler failure
  becomes a structured error response so the reply contract always holds.

Registration states:
    UNREGISTERED → PERMISSION_PENDING → REGISTERED
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from scriptext.bridge.host import FetchResponse, HostFacilities
from scriptext.bridge.protocol import (
    BridgeResponse,
    CapabilityKind,
    DeleteValuePayload,
    DownloadPayload,
    FetchPayload,
    GetValuePayload,
    IgnorableError,
    ListValuesPayload,
    NotificationPayload,
    OpenTabPayload,
    ProtocolError,
    SetValuePayload,
    decode_request,
)
from scriptext.manifest import REGISTRATION_PERMISSION, SCRIPT_FILE, SHIM_FILE, icon_file
from scriptext.metadata import ScriptMetadata, sanitize_name
from scriptext.permissions import injection_matches


logger = logging.getLogger(__name__)

WORLD_CSP = "script-src 'self' 'unsafe-eval'"
NOTIFICATION_ICON = "/" + icon_file(48)


class RegistrationState(Enum):
    UNREGISTERED = "unregistered"
    PERMISSION_PENDING = "permission_pending"
    REGISTERED = "registered"


def storage_prefix(name: str) -> str:
    """Namespace prefix for one script's keys in the shared store."""
    return f"userscript_{sanitize_name(name)}_"


def script_id(name: str) -> str:
    return f"us_{sanitize_name(name)}"


@dataclass
class InjectionRule:
    """The registered userScripts entry for one converted script."""
    id: str
    matches: List[str]
    exclude_matches: List[str] = field(default_factory=list)
    all_frames: bool = True
    run_at: str = "document_idle"
    js: Tuple[str, ...] = (SHIM_FILE, SCRIPT_FILE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "matches": list(self.matches),
            "excludeMatches": list(self.exclude_matches),
            "allFrames": self.all_frames,
            "runAt": self.run_at,
            "js": [{"file": f} for f in self.js],
        }


def build_injection_rule(meta: ScriptMetadata) -> InjectionRule:
    return InjectionRule(
        id=script_id(meta.name),
        matches=injection_matches(meta),
        exclude_matches=list(meta.excludes),
        all_frames=not meta.no_frames,
        run_at=meta.run_at.value,
    )


# =============================================================================
# Capability handlers
# =============================================================================

@dataclass
class CapabilityContext:
    """What a handler may use: host facilities and the script's namespace."""
    host: HostFacilities
    prefix: str

    def key(self, name: str) -> str:
        return self.prefix + name


class CapabilityHandler:
    """Executes one kind of capability request.

    Subclasses set ``kind`` and implement handle(). Raising is fine: the
    Controller turns exceptions into error responses.
    """

    kind: CapabilityKind

    async def handle(self, payload: Any, ctx: CapabilityContext) -> Any:
        raise NotImplementedError


class GetValueHandler(CapabilityHandler):
    kind = CapabilityKind.GET_VALUE

    async def handle(self, payload: GetValuePayload, ctx: CapabilityContext) -> Any:
        key = ctx.key(payload.name)
        data = await ctx.host.storage.get([key])
        return data[key] if key in data else payload.default


class SetValueHandler(CapabilityHandler):
    kind = CapabilityKind.SET_VALUE

    async def handle(self, payload: SetValuePayload, ctx: CapabilityContext) -> None:
        await ctx.host.storage.set({ctx.key(payload.name): payload.value})


class DeleteValueHandler(CapabilityHandler):
    kind = CapabilityKind.DELETE_VALUE

    async def handle(self, payload: DeleteValuePayload, ctx: CapabilityContext) -> None:
        await ctx.host.storage.remove(ctx.key(payload.name))


class ListValuesHandler(CapabilityHandler):
    """Returns {name: value} for this script's keys, prefix stripped."""

    kind = CapabilityKind.LIST_VALUES

    async def handle(self, payload: ListValuesPayload, ctx: CapabilityContext) -> Dict[str, Any]:
        data = await ctx.host.storage.get(None)
        return {
            key[len(ctx.prefix):]: value
            for key, value in data.items()
            if key.startswith(ctx.prefix)
        }


def decode_fetch_body(response: FetchResponse, response_type: str) -> Tuple[Any, str]:
    """
    Decode a response body according to the requested response type.

    Returns:
        (response, response_text). Binary types return raw bytes and the text
        only when the bytes are valid UTF-8; JSON falls back to the text when
        parsing fails.
    """
    if response_type in ("blob", "arraybuffer"):
        try:
            text = response.body.decode("utf-8")
        except UnicodeDecodeError:
            text = ""
        return response.body, text

    text = response.body.decode("utf-8", errors="replace")
    if response_type == "json" or "application/json" in response.content_type:
        try:
            return json.loads(text), text
        except ValueError:
            return text, text
    return text, text


class FetchHandler(CapabilityHandler):
    kind = CapabilityKind.FETCH

    async def handle(self, payload: FetchPayload, ctx: CapabilityContext) -> Dict[str, Any]:
        response = await ctx.host.fetcher.fetch(
            payload.url,
            method=payload.method,
            headers=payload.headers,
            body=payload.data,
            credentials="omit" if payload.anonymous else "include",
            timeout=payload.timeout,
        )
        body, text = decode_fetch_body(response, payload.response_type)
        return {
            "response": body,
            "responseText": text,
            "status": response.status,
            "statusText": response.status_text,
            "responseHeaders": dict(response.headers),
        }


class DownloadHandler(CapabilityHandler):
    kind = CapabilityKind.DOWNLOAD

    async def handle(self, payload: DownloadPayload, ctx: CapabilityContext) -> None:
        await ctx.host.downloads.download(payload.url, payload.name)


class OpenTabHandler(CapabilityHandler):
    kind = CapabilityKind.OPEN_TAB

    async def handle(self, payload: OpenTabPayload, ctx: CapabilityContext) -> None:
        await ctx.host.tabs.create(payload.url, active=not payload.open_in_background)


class NotificationHandler(CapabilityHandler):
    """Best-effort: a failed notification is reported as ignorable."""

    kind = CapabilityKind.NOTIFICATION

    async def handle(self, payload: NotificationPayload, ctx: CapabilityContext) -> Optional[IgnorableError]:
        try:
            await ctx.host.notifications.create(
                payload.title or "Notice", payload.text, NOTIFICATION_ICON
            )
        except Exception as e:
            logger.warning(f"Notification failed (ignored): {e}")
            return IgnorableError(str(e))
        return None


def default_handlers() -> List[CapabilityHandler]:
    return [
        GetValueHandler(),
        SetValueHandler(),
        DeleteValueHandler(),
        ListValuesHandler(),
        FetchHandler(),
        DownloadHandler(),
        OpenTabHandler(),
        NotificationHandler(),
    ]


# =============================================================================
# Controller
# =============================================================================

class Controller:
    """Privileged-context program for one converted script."""

    def __init__(
        self,
        meta: ScriptMetadata,
        host: HostFacilities,
        handlers: Optional[Iterable[CapabilityHandler]] = None,
    ):
        self.meta = meta
        self.host = host
        self.rule = build_injection_rule(meta)
        self.context = CapabilityContext(host=host, prefix=storage_prefix(meta.name))
        self.handlers: Dict[CapabilityKind, CapabilityHandler] = {
            h.kind: h for h in (handlers if handlers is not None else default_handlers())
        }
        self._state = RegistrationState.UNREGISTERED
        self._lock = asyncio.Lock()

    @property
    def state(self) -> RegistrationState:
        return self._state

    async def start(self) -> RegistrationState:
        """Run the load-time registration check."""
        return await self.update_registration()

    async def on_permission_granted(self) -> RegistrationState:
        """Handle an explicit user grant of the registration permission."""
        return await self.update_registration()

    async def update_registration(self) -> RegistrationState:
        """Register the injection rule if the registration permission is granted."""
        try:
            granted = await self.host.permissions.contains(REGISTRATION_PERMISSION)
        except Exception as e:
            logger.warning(f"Permission check error: {e}")
            return self._state
        if granted:
            await self._register()
        else:
            logger.debug(f"Waiting for '{REGISTRATION_PERMISSION}' grant")
        return self._state

    async def _register(self) -> None:
        async with self._lock:
            if self._state is RegistrationState.REGISTERED:
                return
            self._state = RegistrationState.PERMISSION_PENDING

            registry = self.host.registry
            try:
                await registry.configure_world(messaging=True, csp=WORLD_CSP)
            except Exception as e:
                logger.warning(f"configure_world failed: {e}")

            try:
                await registry.register([self.rule.to_dict()])
            except Exception as e:
                self._state = RegistrationState.UNREGISTERED
                logger.warning(f"Registration of {self.rule.id} failed: {e}")
                return

            self._state = RegistrationState.REGISTERED
            self.host.messaging.add_listener(self.handle_message)
            logger.info(f"Registered {self.rule.id} for {len(self.rule.matches)} pattern(s)")

    async def handle_message(self, message: Any) -> Dict[str, Any]:
        """Execute one wire request and return the wire response."""
        correlation_id = _peek_correlation_id(message)
        try:
            request = decode_request(message)
        except ProtocolError as e:
            logger.warning(f"Rejected message: {e}")
            return BridgeResponse.failure(str(e), correlation_id).to_message()

        handler = self.handlers.get(request.kind)
        if handler is None:
            return BridgeResponse.failure(
                f"Unsupported capability: {request.kind.value}", correlation_id
            ).to_message()

        logger.debug(f"Dispatching {request.kind.value}")
        try:
            result = await handler.handle(request.payload, self.context)
        except Exception as e:
            logger.warning(f"{request.kind.value} failed: {e}")
            return BridgeResponse.failure(str(e) or type(e).__name__, correlation_id).to_message()
        return BridgeResponse.ok(result, correlation_id).to_message()


def _peek_correlation_id(message: Any) -> Optional[str]:
    if isinstance(message, Mapping):
        payload = message.get("payload")
        if isinstance(payload, Mapping):
            return payload.get("id")
    return None
