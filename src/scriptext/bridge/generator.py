# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Bridge protocol generator - emit the Shim and Controller programs.

Renders the Jinja templates under ``templates/`` with the constants the
Python runtime uses (wire tags, retry policy, storage namespace, injection
rule), so the emitted JavaScript and the reference runtime share one
contract.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import jinja2

from scriptext import __version__
from scriptext.bridge.controller import (
    NOTIFICATION_ICON,
    WORLD_CSP,
    build_injection_rule,
    storage_prefix,
)
from scriptext.bridge.protocol import FETCH_FIELDS, NO_RECEIVER_MARKER, CapabilityKind
from scriptext.bridge.shim import ScriptInfo
from scriptext.config import BridgeConfig
from scriptext.manifest import REGISTRATION_PERMISSION
from scriptext.metadata import ScriptMetadata


BANNER = f"Generated by scriptext {__version__}"

_env = jinja2.Environment(
    loader=jinja2.PackageLoader("scriptext.bridge", "templates"),
    autoescape=False,
    keep_trailing_newline=True,
    undefined=jinja2.StrictUndefined,
)


@dataclass
class BridgeSources:
    """The two emitted programs, in injection/load order."""
    shim: str
    controller: str


def _render(template_name: str, **ctx: Any) -> str:
    return _env.get_template(template_name).render(banner=BANNER, **ctx)


def _kinds() -> Dict[str, str]:
    return {kind.name: kind.value for kind in CapabilityKind}


def generate_shim(meta: ScriptMetadata, config: Optional[BridgeConfig] = None) -> str:
    """Render the script-side Shim (defines GM_* and GM_info)."""
    config = config or BridgeConfig()
    return _render(
        "shim.js.j2",
        info=ScriptInfo.from_metadata(meta).to_dict(),
        attempts=config.send_attempts,
        base_delay_ms=config.retry_base_delay_ms,
        no_receiver_marker=NO_RECEIVER_MARKER,
        fetch_fields=list(FETCH_FIELDS),
        kinds=_kinds(),
    )


def generate_controller(meta: ScriptMetadata, config: Optional[BridgeConfig] = None) -> str:
    """Render the privileged Controller (registration + capability handlers)."""
    return _render(
        "controller.js.j2",
        prefix=storage_prefix(meta.name),
        rule=build_injection_rule(meta).to_dict(),
        registration_permission=REGISTRATION_PERMISSION,
        world_csp=WORLD_CSP,
        notification_icon=NOTIFICATION_ICON,
        kinds=_kinds(),
    )


def generate_bridge(meta: ScriptMetadata, config: Optional[BridgeConfig] = None) -> BridgeSources:
    return BridgeSources(
        shim=generate_shim(meta, config),
        controller=generate_controller(meta, config),
    )


def generate_options_page(meta: ScriptMetadata) -> str:
    return _render(
        "options.html.j2",
        name=meta.name,
        registration_permission=REGISTRATION_PERMISSION,
    )
