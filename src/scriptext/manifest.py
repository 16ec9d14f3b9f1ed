# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Manifest V3 document for a converted userscript."""

from typing import Any, Dict, Optional, Sequence

from scriptext.config import ManifestConfig
from scriptext.metadata import ScriptMetadata
from scriptext.permissions import PermissionSet, synthesize_permissions


CONTROLLER_FILE = "background.js"
SHIM_FILE = "userscript_api.js"
SCRIPT_FILE = "script.user.js"
OPTIONS_FILE = "options.html"
REGISTRATION_PERMISSION = "userScripts"


def icon_file(size: int) -> str:
    return f"icon-{size}.png"


def build_manifest(
    meta: ScriptMetadata,
    permissions: Optional[PermissionSet] = None,
    config: Optional[ManifestConfig] = None,
    icon_sizes: Sequence[int] = (48, 128),
) -> Dict[str, Any]:
    """
    Build the manifest.json content for a converted script.

    Optional fields (author, homepage_url, support_url, gecko id) are only
    present when they have a value.

    Args:
        meta: Parsed (and overridden) script metadata
        permissions: Precomputed PermissionSet, synthesized from meta if None
        config: Manifest settings
        icon_sizes: Icon raster sizes shipped in the bundle

    Returns:
        Manifest as a JSON-serializable dict
    """
    config = config or ManifestConfig()
    if permissions is None:
        permissions = synthesize_permissions(meta)

    icons = {str(size): icon_file(size) for size in icon_sizes}

    manifest: Dict[str, Any] = {
        "manifest_version": 3,
        "name": meta.name or config.default_name,
        "description": meta.description or "",
        "version": meta.version or "1.0.0",
    }
    if meta.author:
        manifest["author"] = meta.author
    if meta.homepage:
        manifest["homepage_url"] = meta.homepage
    if meta.support:
        manifest["support_url"] = meta.support

    manifest.update({
        "icons": icons,
        "action": {"default_title": "Enable Userscript", "default_icon": dict(icons)},
        "background": {"scripts": [CONTROLLER_FILE], "service_worker": CONTROLLER_FILE},
        "host_permissions": list(permissions.host_patterns),
        "permissions": list(permissions.api_permissions),
        "optional_permissions": [REGISTRATION_PERMISSION],
        "options_ui": {"page": OPTIONS_FILE, "open_in_tab": True},
        "options_page": OPTIONS_FILE,
        "minimum_chrome_version": config.minimum_chrome_version,
    })
    if config.gecko_id:
        manifest["browser_specific_settings"] = {"gecko": {"id": config.gecko_id}}

    return manifest
