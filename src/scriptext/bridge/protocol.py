# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Bridge protocol - wire entities exchanged between Shim and Controller.

A request is ``{"type": <kind tag>, "payload": {...}}``; fetch requests carry
their correlation id as ``payload["id"]``. A response is
``{"id"?, "success", "result"?, "error"?, "ignored"?}``.

Each capability kind has its own payload dataclass; decode_request() turns a
raw message into a typed BridgeRequest or raises ProtocolError.
"""

import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from scriptext import ScriptextError


NO_RECEIVER_MARKER = "Receiving end does not exist"


class BridgeError(ScriptextError):
    """Base class for bridge errors."""
    pass


class ProtocolError(BridgeError):
    """Raised when a wire message cannot be decoded."""
    pass


class BridgeDeliveryError(BridgeError):
    """Raised when a message cannot be delivered to the Controller."""
    pass


class NoReceiverError(BridgeDeliveryError):
    """Raised when nothing is listening on the privileged side yet."""

    def __init__(self, message: str = f"Could not establish connection. {NO_RECEIVER_MARKER}."):
        super().__init__(message)


class CapabilityError(BridgeError):
    """Error reported by the Controller for a capability call."""
    pass


class CapabilityKind(Enum):
    """Capability tags carried on the wire as the message type."""

    GET_VALUE = "GM_getValue"
    SET_VALUE = "GM_setValue"
    DELETE_VALUE = "GM_deleteValue"
    LIST_VALUES = "GM_listValues"
    FETCH = "GM_xmlhttpRequest"
    DOWNLOAD = "GM_download"
    OPEN_TAB = "GM_openInTab"
    NOTIFICATION = "GM_notification"


@dataclass(frozen=True)
class IgnorableError:
    """Failure of a best-effort operation, returned instead of raised."""
    message: str


# =============================================================================
# Payloads
# =============================================================================

def _require_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"payload field '{key}' must be a non-empty string")
    return value


@dataclass
class GetValuePayload:
    name: str
    default: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GetValuePayload":
        return cls(name=_require_str(data, "name"), default=data.get("defaultValue"))

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "defaultValue": self.default}


@dataclass
class SetValuePayload:
    name: str
    value: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SetValuePayload":
        return cls(name=_require_str(data, "name"), value=data.get("value"))

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "value": self.value}


@dataclass
class DeleteValuePayload:
    name: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeleteValuePayload":
        return cls(name=_require_str(data, "name"))

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name}


@dataclass
class ListValuesPayload:

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ListValuesPayload":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {}


# Fields copied from the caller's request details; callbacks never cross.
FETCH_FIELDS = ("url", "method", "headers", "data", "responseType", "anonymous", "timeout")


@dataclass
class FetchPayload:
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    data: Optional[Union[str, bytes]] = None
    response_type: str = ""
    anonymous: bool = False
    timeout: Optional[float] = None
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FetchPayload":
        headers = data.get("headers") or {}
        if not isinstance(headers, Mapping):
            raise ProtocolError("payload field 'headers' must be a mapping")
        timeout = data.get("timeout")
        try:
            timeout_seconds = float(timeout) / 1000.0 if timeout else None
        except (TypeError, ValueError):
            raise ProtocolError(f"payload field 'timeout' must be a number of milliseconds, got: {timeout!r}")
        return cls(
            url=_require_str(data, "url"),
            method=str(data.get("method") or "GET").upper(),
            headers={str(k): str(v) for k, v in headers.items()},
            data=data.get("data"),
            response_type=str(data.get("responseType") or ""),
            anonymous=bool(data.get("anonymous", False)),
            timeout=timeout_seconds,
            id=data.get("id"),
        )

    @classmethod
    def from_details(cls, details: Mapping[str, Any], correlation_id: str) -> "FetchPayload":
        """Build a payload from caller details, dropping callbacks and unknown keys."""
        sanitized = {k: details[k] for k in FETCH_FIELDS if k in details and not callable(details[k])}
        sanitized["id"] = correlation_id
        return cls.from_dict(sanitized)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"url": self.url, "method": self.method, "id": self.id}
        if self.headers:
            out["headers"] = dict(self.headers)
        if self.data is not None:
            out["data"] = self.data
        if self.response_type:
            out["responseType"] = self.response_type
        if self.anonymous:
            out["anonymous"] = True
        if self.timeout is not None:
            out["timeout"] = int(self.timeout * 1000)
        return out


@dataclass
class DownloadPayload:
    url: str
    name: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DownloadPayload":
        return cls(url=_require_str(data, "url"), name=str(data.get("name") or ""))

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "name": self.name}


@dataclass
class OpenTabPayload:
    url: str
    open_in_background: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OpenTabPayload":
        return cls(
            url=_require_str(data, "url"),
            open_in_background=bool(data.get("open_in_background", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "open_in_background": self.open_in_background}


@dataclass
class NotificationPayload:
    text: str = ""
    title: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NotificationPayload":
        return cls(text=str(data.get("text") or ""), title=str(data.get("title") or ""))

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "title": self.title}


Payload = Union[
    GetValuePayload,
    SetValuePayload,
    DeleteValuePayload,
    ListValuesPayload,
    FetchPayload,
    DownloadPayload,
    OpenTabPayload,
    NotificationPayload,
]

PAYLOAD_TYPES = {
    CapabilityKind.GET_VALUE: GetValuePayload,
    CapabilityKind.SET_VALUE: SetValuePayload,
    CapabilityKind.DELETE_VALUE: DeleteValuePayload,
    CapabilityKind.LIST_VALUES: ListValuesPayload,
    CapabilityKind.FETCH: FetchPayload,
    CapabilityKind.DOWNLOAD: DownloadPayload,
    CapabilityKind.OPEN_TAB: OpenTabPayload,
    CapabilityKind.NOTIFICATION: NotificationPayload,
}


# =============================================================================
# Requests and responses
# =============================================================================

@dataclass
class BridgeRequest:
    """One capability call from the Shim."""
    kind: CapabilityKind
    payload: Payload

    @property
    def correlation_id(self) -> Optional[str]:
        return getattr(self.payload, "id", None)

    def to_message(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "payload": self.payload.to_dict()}


@dataclass
class BridgeResponse:
    """Reply to one BridgeRequest."""
    correlation_id: Optional[str] = None
    success: bool = True
    result: Any = None
    error: Optional[str] = None
    ignored: Optional[str] = None

    @classmethod
    def ok(cls, result: Any = None, correlation_id: Optional[str] = None) -> "BridgeResponse":
        if isinstance(result, IgnorableError):
            return cls(correlation_id=correlation_id, ignored=result.message)
        return cls(correlation_id=correlation_id, result=result)

    @classmethod
    def failure(cls, error: str, correlation_id: Optional[str] = None) -> "BridgeResponse":
        return cls(correlation_id=correlation_id, success=False, error=error)

    def to_message(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"success": self.success}
        if self.correlation_id is not None:
            message["id"] = self.correlation_id
        if self.success:
            message["result"] = self.result
        else:
            message["error"] = self.error
        if self.ignored:
            message["ignored"] = self.ignored
        return message

    @classmethod
    def from_message(cls, message: Any) -> "BridgeResponse":
        """Decode a reply. A missing or non-mapping reply is a failure."""
        if not isinstance(message, Mapping):
            return cls.failure("Unknown error")
        if not message.get("success", False):
            return cls.failure(str(message.get("error") or "Unknown error"), message.get("id"))
        return cls(
            correlation_id=message.get("id"),
            result=message.get("result"),
            ignored=message.get("ignored"),
        )


def decode_request(message: Any) -> BridgeRequest:
    """
    Decode a raw wire message into a typed BridgeRequest.

    Raises:
        ProtocolError: If the message has no known type or a bad payload.
    """
    if not isinstance(message, Mapping):
        raise ProtocolError(f"message must be a mapping, got: {type(message).__name__}")
    tag = message.get("type")
    try:
        kind = CapabilityKind(tag)
    except ValueError:
        raise ProtocolError(f"Unknown capability: {tag}")
    payload = message.get("payload") or {}
    if not isinstance(payload, Mapping):
        raise ProtocolError(f"payload for {tag} must be a mapping")
    try:
        decoded = PAYLOAD_TYPES[kind].from_dict(payload)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"bad payload for {tag}: {e}")
    return BridgeRequest(kind=kind, payload=decoded)


class CorrelationIds:
    """
    Correlation id source for one Shim: ``<seq>_<epoch millis>``.

    The sequence number increases monotonically, so ids stay distinct even
    when two requests share a timestamp.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._seq = itertools.count(1)
        self._clock = clock

    def next(self) -> str:
        return f"{next(self._seq)}_{int(self._clock() * 1000)}"
