# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Permission synthesizer - derive the extension's access surface from metadata.

Host patterns come from @match, @include and @connect; API permissions come
from @grant through a fixed table. Grants without a table entry (style
injection, GM_info, tab-open, XHR) ride on messaging and need nothing.
"""

from dataclasses import dataclass
from typing import Iterable, List, Tuple

from scriptext.metadata import ScriptMetadata


ALL_ORIGINS = "*://*/*"
WILDCARD_SCHEME = "*://"
EXPLICIT_SCHEMES = ("http://", "https://", "*://")

GRANT_PERMISSIONS = {
    "GM_setValue": "storage",
    "GM_getValue": "storage",
    "GM_deleteValue": "storage",
    "GM_listValues": "storage",
    "GM_getResourceText": "storage",
    "GM_getResourceURL": "storage",
    "GM_download": "downloads",
    "GM_notification": "notifications",
    "GM_setClipboard": "clipboardWrite",
}


@dataclass(frozen=True)
class PermissionSet:
    """Derived access surface for one conversion.

    Both tuples are deduplicated and keep first-seen order, so the manifest
    is reproducible for a given script.
    """
    host_patterns: Tuple[str, ...] = ()
    api_permissions: Tuple[str, ...] = ()


def _dedupe(items: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(items))


def normalize_match(pattern: str) -> str:
    """Prefix a @match pattern with the wildcard scheme unless it has one."""
    if pattern.startswith(EXPLICIT_SCHEMES):
        return pattern
    return WILDCARD_SCHEME + pattern


def normalize_include(glob: str) -> str:
    """
    Rewrite a legacy @include glob into a match pattern covering a subtree.

    Examples:
        http*://example.com     → *://example.com/*
        example.com/path/       → *://example.com/path/*
        *://example.com/*       → *://example.com/*
    """
    pattern = glob
    if pattern.startswith("http*:"):
        pattern = "*:" + pattern[len("http*:"):]
    if "://" not in pattern:
        pattern = WILDCARD_SCHEME + pattern
    if not pattern.endswith("*"):
        if not pattern.endswith("/"):
            pattern += "/"
        pattern += "*"
    return pattern


def connect_patterns(domain: str, meta: ScriptMetadata) -> List[str]:
    """Expand one @connect entry into host patterns."""
    if not domain:
        return []
    if domain in ("*", "*.*"):
        return [ALL_ORIGINS]
    if domain == "self":
        # Limited to the script's own injection targets
        return injection_matches(meta)
    patterns = [f"*://{domain}/*"]
    if not domain.startswith("*."):
        patterns.append(f"*://*.{domain}/*")
    return patterns


def host_patterns(meta: ScriptMetadata) -> Tuple[str, ...]:
    """Derive deduplicated host patterns: matches, then includes, then connect."""
    patterns: List[str] = []
    patterns.extend(normalize_match(p) for p in meta.matches)
    patterns.extend(normalize_include(g) for g in meta.includes)
    for domain in meta.connect:
        patterns.extend(connect_patterns(domain, meta))
    return _dedupe(patterns)


def grant_permission(grant: str) -> str:
    """Map a grant to its API permission, or "" when it implies none.

    Both spellings are accepted: ``GM_setValue`` and ``GM.setValue``.
    """
    if grant.startswith("GM."):
        grant = "GM_" + grant[3:]
    return GRANT_PERMISSIONS.get(grant, "")


def api_permissions(meta: ScriptMetadata) -> Tuple[str, ...]:
    """Derive API permissions from grants. Unknown grants are ignored."""
    return _dedupe(p for p in (grant_permission(g) for g in meta.grants) if p)


def synthesize_permissions(meta: ScriptMetadata) -> PermissionSet:
    """Compute the PermissionSet for a parsed script."""
    return PermissionSet(
        host_patterns=host_patterns(meta),
        api_permissions=api_permissions(meta),
    )


def injection_matches(meta: ScriptMetadata) -> List[str]:
    """Match patterns used by the injection rule: matches plus includes."""
    return list(_dedupe(
        [normalize_match(p) for p in meta.matches]
        + [normalize_include(g) for g in meta.includes]
    ))
