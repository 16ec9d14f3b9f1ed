"""Userscript metadata parsing.

Extracts the ``// ==UserScript==`` header block from script text into a
ScriptMetadata value and strips it from the script body.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional

from scriptext import ScriptextError


class MetadataValidationError(ScriptextError):
    """Raised when metadata is not sufficient to build an extension."""

    pass


class RunAt(Enum):
    """Injection timing for the converted script."""

    DOCUMENT_START = "document_start"
    DOCUMENT_END = "document_end"
    DOCUMENT_IDLE = "document_idle"


# Sentinel lines, matched against the trimmed line
BLOCK_START = re.compile(r"^//\s*==UserScript==$")
BLOCK_END = re.compile(r"^//\s*==/UserScript==$")

# Whole block, used when stripping it from the body
BLOCK_PATTERN = re.compile(
    r"^[ \t]*//[ \t]*==UserScript==[ \t]*$.*?^[ \t]*//[ \t]*==/UserScript==[ \t]*$",
    re.MULTILINE | re.DOTALL,
)

# run-at spellings that do not fall back to idle
RUN_AT_VALUES = {
    "document-start": RunAt.DOCUMENT_START,
    "document-end": RunAt.DOCUMENT_END,
    "document-body": RunAt.DOCUMENT_END,
}

HOMEPAGE_KEYS = ("homepage", "homepageurl", "website", "source")
LIST_KEYS = {
    "match": "matches",
    "include": "includes",
    "exclude": "excludes",
    "grant": "grants",
    "connect": "connect",
}
SCALAR_KEYS = {
    "name": "name",
    "description": "description",
    "version": "version",
    "author": "author",
    "supporturl": "support",
}


@dataclass
class ScriptMetadata:
    """Declarations parsed from one userscript header.

    Required fields for packaging:
    - name: Identity of the extension and key for storage namespacing
    - matches or includes: At least one injection pattern

    Everything else is optional and keeps its default when absent.
    """

    name: str = ""
    description: str = ""
    version: str = "1.0.0"
    author: str = ""
    homepage: str = ""
    support: str = ""
    matches: List[str] = field(default_factory=list)
    includes: List[str] = field(default_factory=list)
    excludes: List[str] = field(default_factory=list)
    grants: List[str] = field(default_factory=list)
    connect: List[str] = field(default_factory=list)
    run_at: RunAt = RunAt.DOCUMENT_IDLE
    no_frames: bool = False

    def validate(self) -> None:
        """Check the fields required to build an extension.

        Raises:
            MetadataValidationError: If name or injection patterns are missing.
        """
        if not self.name or not self.name.strip():
            raise MetadataValidationError(
                "Script metadata must include a @name."
            )
        if not self.matches and not self.includes:
            raise MetadataValidationError(
                "Script metadata must include at least one @match or @include pattern."
            )


def parse_run_at(value: str) -> RunAt:
    """Map a run-at value to a RunAt, falling back to idle."""
    return RUN_AT_VALUES.get(value.strip().lower(), RunAt.DOCUMENT_IDLE)


def _split_directive(line: str) -> Optional[tuple]:
    """Split a ``// @key value`` comment line into (key, value)."""
    if not line.startswith("//"):
        return None
    content = line[2:].strip()
    if not content.startswith("@"):
        return None
    parts = content[1:].split(None, 1)
    if not parts:
        return None
    key = parts[0].lower()
    value = parts[1].strip() if len(parts) > 1 else ""
    return key, value


def parse_metadata(text: str) -> ScriptMetadata:
    """Parse the metadata block of a userscript.

    Never raises: unknown keys are dropped and malformed values keep their
    defaults. Text outside the block is ignored, and the scan stops at the
    end marker (or at end of input when the marker is missing).

    Args:
        text: Raw script text.

    Returns:
        ScriptMetadata with every recognized directive applied.
    """
    meta = ScriptMetadata()
    in_block = False

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not in_block:
            if BLOCK_START.match(line):
                in_block = True
            continue
        if BLOCK_END.match(line):
            break

        directive = _split_directive(line)
        if directive is None:
            continue
        key, value = directive

        if key in LIST_KEYS:
            if key == "grant" and value == "none":
                continue
            if value:
                getattr(meta, LIST_KEYS[key]).append(value)
        elif key in SCALAR_KEYS:
            setattr(meta, SCALAR_KEYS[key], value)
        elif key in HOMEPAGE_KEYS:
            meta.homepage = value
        elif key == "run-at":
            meta.run_at = parse_run_at(value)
        elif key == "noframes":
            meta.no_frames = True

    return meta


def strip_metadata_block(text: str) -> str:
    """Remove the first metadata block and trim surrounding whitespace.

    Example:
        >>> strip_metadata_block("// ==UserScript==\\n// @name X\\n// ==/UserScript==\\nbody();")
        'body();'
    """
    return BLOCK_PATTERN.sub("", text, count=1).strip()


def apply_overrides(
    meta: ScriptMetadata,
    description: Optional[str] = None,
    author: Optional[str] = None,
    homepage: Optional[str] = None,
    support: Optional[str] = None,
) -> ScriptMetadata:
    """Return a copy of meta where each non-empty override wins."""
    changes = {
        key: value
        for key, value in (
            ("description", description),
            ("author", author),
            ("homepage", homepage),
            ("support", support),
        )
        if value and value.strip()
    }
    return replace(meta, **changes)


def sanitize_name(name: str) -> str:
    """Collapse every run of non-word characters in a script name to ``_``."""
    return re.sub(r"\W+", "_", name, flags=re.ASCII) if name else "script"
