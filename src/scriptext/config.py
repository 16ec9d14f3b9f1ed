# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Converter configuration.

Loads an optional YAML file with bridge, manifest and icon settings.
Search order:
1. Explicit path (must exist)
2. $SCRIPTEXT_CONFIG (if set)
3. ~/.scriptext/config.yaml
4. Built-in defaults
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from scriptext import ScriptextError


class ConfigError(ScriptextError):
    """Raised when a config file has invalid structure or values."""
    pass


DEFAULT_CONFIG_PATH = Path("~/.scriptext/config.yaml")


@dataclass
class BridgeConfig:
    """Delivery settings shared by the Python runtime and the emitted JS."""
    send_attempts: int = 8
    retry_base_delay_ms: int = 150

    @property
    def retry_base_delay(self) -> float:
        """Base delay in seconds."""
        return self.retry_base_delay_ms / 1000.0


@dataclass
class ManifestConfig:
    minimum_chrome_version: str = "120"
    gecko_id: Optional[str] = None
    default_name: str = "Converted Userscript"


@dataclass
class ConverterConfig:
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    manifest: ManifestConfig = field(default_factory=ManifestConfig)
    icon_sizes: Tuple[int, ...] = (48, 128)
    source: Optional[Path] = None


def get_config_paths() -> List[Path]:
    """Get config search paths in priority order."""
    paths = []
    env_path = os.environ.get("SCRIPTEXT_CONFIG")
    if env_path:
        paths.append(Path(env_path).expanduser())
    paths.append(DEFAULT_CONFIG_PATH.expanduser())
    return paths


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping, got: {type(section).__name__}")
    return section


def _positive_int(section: Dict[str, Any], key: str, default: int, where: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{where}.{key} must be a positive integer, got: {value!r}")
    return value


def parse_config(data: Optional[Dict[str, Any]], source: Optional[Path] = None) -> ConverterConfig:
    """
    Build a ConverterConfig from a parsed YAML mapping.

    Unknown keys are ignored. Missing keys keep their defaults.

    Raises:
        ConfigError: If a known key has the wrong type.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("config file must contain a YAML mapping")

    bridge_data = _section(data, "bridge")
    bridge = BridgeConfig(
        send_attempts=_positive_int(bridge_data, "send_attempts", 8, "bridge"),
        retry_base_delay_ms=_positive_int(bridge_data, "retry_base_delay_ms", 150, "bridge"),
    )

    manifest_data = _section(data, "manifest")
    gecko_id = manifest_data.get("gecko_id")
    manifest = ManifestConfig(
        minimum_chrome_version=str(manifest_data.get("minimum_chrome_version", "120")),
        gecko_id=str(gecko_id) if gecko_id else None,
        default_name=str(manifest_data.get("default_name", "Converted Userscript")),
    )

    sizes = _section(data, "icons").get("sizes", [48, 128])
    if not isinstance(sizes, list) or not sizes or not all(
        isinstance(s, int) and not isinstance(s, bool) and s > 0 for s in sizes
    ):
        raise ConfigError(f"icons.sizes must be a non-empty list of positive integers, got: {sizes!r}")

    return ConverterConfig(
        bridge=bridge,
        manifest=manifest,
        icon_sizes=tuple(sizes),
        source=source,
    )


def load_config(config_path: Optional[str] = None) -> ConverterConfig:
    """
    Load converter configuration.

    Args:
        config_path: Explicit path. Must exist when given.

    Returns:
        ConverterConfig (defaults when no file is found)

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        ConfigError: If the file is not valid YAML or has invalid values.
    """
    if config_path:
        path = Path(config_path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        candidates = [path]
    else:
        candidates = [p for p in get_config_paths() if p.exists()]

    if not candidates:
        return ConverterConfig()

    path = candidates[0]
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}")
    return parse_config(data, source=path)
