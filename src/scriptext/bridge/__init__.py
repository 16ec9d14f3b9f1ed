"""Capability bridge between an injected userscript and the extension.

The Shim runs beside the script and forwards GM_* calls; the Controller runs
in the privileged context, owns registration and executes the calls.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

from scriptext.bridge.controller import (
    CapabilityHandler,
    Controller,
    InjectionRule,
    RegistrationState,
    build_injection_rule,
    storage_prefix,
)
from scriptext.bridge.generator import (
    BridgeSources,
    generate_bridge,
    generate_controller,
    generate_shim,
)
from scriptext.bridge.host import HostFacilities, HttpxFetcher, InMemoryStore, JsonFileStore
from scriptext.bridge.protocol import (
    BridgeDeliveryError,
    BridgeRequest,
    BridgeResponse,
    CapabilityError,
    CapabilityKind,
    IgnorableError,
    NoReceiverError,
    ProtocolError,
)
from scriptext.bridge.shim import RequestHandle, ScriptInfo, Shim, ShimState
from scriptext.bridge.transport import MessageBus, send_with_retry

__all__ = [
    "BridgeDeliveryError",
    "BridgeRequest",
    "BridgeResponse",
    "BridgeSources",
    "CapabilityError",
    "CapabilityHandler",
    "CapabilityKind",
    "Controller",
    "HostFacilities",
    "HttpxFetcher",
    "IgnorableError",
    "InMemoryStore",
    "InjectionRule",
    "JsonFileStore",
    "MessageBus",
    "NoReceiverError",
    "ProtocolError",
    "RegistrationState",
    "RequestHandle",
    "ScriptInfo",
    "Shim",
    "ShimState",
    "build_injection_rule",
    "generate_bridge",
    "generate_controller",
    "generate_shim",
    "send_with_retry",
    "storage_prefix",
]
