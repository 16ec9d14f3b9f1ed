# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Packager - assemble a converted userscript into an extension bundle.

Pipeline:
    script text → parse_metadata → apply_overrides → validate
        → build_manifest + generate_bridge + strip_metadata_block + icons
        → ExtensionBundle → zip archive or directory
"""

import json
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from scriptext import ScriptextError
from scriptext.bridge.generator import generate_bridge, generate_options_page
from scriptext.config import ConverterConfig
from scriptext.icons import generate_icons
from scriptext.manifest import (
    CONTROLLER_FILE,
    OPTIONS_FILE,
    SCRIPT_FILE,
    SHIM_FILE,
    build_manifest,
    icon_file,
)
from scriptext.metadata import (
    MetadataValidationError,
    ScriptMetadata,
    apply_overrides,
    parse_metadata,
    strip_metadata_block,
)
from scriptext.permissions import PermissionSet, synthesize_permissions


logger = logging.getLogger(__name__)


class ConversionError(ScriptextError):
    """Raised when a conversion attempt fails. No partial output is produced."""
    pass


@dataclass
class Overrides:
    """Caller-supplied values that win over parsed metadata when non-empty."""
    description: Optional[str] = None
    author: Optional[str] = None
    homepage: Optional[str] = None
    support: Optional[str] = None


@dataclass
class ExtensionBundle:
    """Named files of one converted extension."""
    metadata: ScriptMetadata
    permissions: PermissionSet
    manifest: Dict
    files: Dict[str, bytes] = field(default_factory=dict)

    @property
    def archive_name(self) -> str:
        safe_name = self.metadata.name.replace("/", "_").replace("\\", "_")
        return f"{safe_name}-extension.zip"

    def write_zip(self, path: Path) -> Path:
        """Write the bundle as a zip archive. Returns the archive path."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for name, data in self.files.items():
                zf.writestr(name, data)
        logger.info(f"Wrote {len(self.files)} files to {path}")
        return path

    def write_directory(self, path: Path) -> Path:
        """Write the bundle as an unpacked extension directory."""
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        for name, data in self.files.items():
            (path / name).write_bytes(data)
        logger.info(f"Wrote {len(self.files)} files to {path}/")
        return path


def build_bundle(
    script_text: str,
    icon: Optional[bytes] = None,
    icon_ext: Optional[str] = None,
    overrides: Optional[Overrides] = None,
    config: Optional[ConverterConfig] = None,
) -> ExtensionBundle:
    """
    Convert a userscript into an ExtensionBundle.

    Args:
        script_text: Raw userscript source
        icon: Optional uploaded icon bytes
        icon_ext: Extension of the uploaded icon file (e.g. "png", "ico")
        overrides: Values that replace parsed metadata when non-empty
        config: Converter settings

    Returns:
        ExtensionBundle with manifest, bridge programs, body, options and icons

    Raises:
        ConversionError: If the script lacks a name or injection patterns.
    """
    config = config or ConverterConfig()
    overrides = overrides or Overrides()

    meta = parse_metadata(script_text)
    meta = apply_overrides(
        meta,
        description=overrides.description,
        author=overrides.author,
        homepage=overrides.homepage,
        support=overrides.support,
    )
    try:
        meta.validate()
    except MetadataValidationError as e:
        raise ConversionError(str(e))

    permissions = synthesize_permissions(meta)
    manifest = build_manifest(meta, permissions, config.manifest, config.icon_sizes)
    sources = generate_bridge(meta, config.bridge)
    icons = generate_icons(icon, icon_ext, config.icon_sizes)

    files: Dict[str, bytes] = {
        "manifest.json": json.dumps(manifest, indent=2).encode("utf-8"),
        CONTROLLER_FILE: sources.controller.encode("utf-8"),
        SHIM_FILE: sources.shim.encode("utf-8"),
        SCRIPT_FILE: strip_metadata_block(script_text).encode("utf-8"),
        OPTIONS_FILE: generate_options_page(meta).encode("utf-8"),
    }
    for size, data in icons.items():
        files[icon_file(size)] = data

    logger.info(
        f"Converted '{meta.name}': {len(permissions.host_patterns)} host pattern(s), "
        f"permissions={list(permissions.api_permissions)}"
    )
    return ExtensionBundle(metadata=meta, permissions=permissions, manifest=manifest, files=files)
