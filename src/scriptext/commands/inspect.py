"""
Inspect command for scriptext.

Shows what a conversion would produce without writing a bundle.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import json
from dataclasses import asdict
from pathlib import Path

import typer

from scriptext.bridge.generator import generate_controller, generate_shim
from scriptext.config import load_config
from scriptext.metadata import ScriptMetadata, parse_metadata
from scriptext.permissions import synthesize_permissions

app = typer.Typer(help="Inspect metadata, permissions and generated bridge code")


def _load(script: Path) -> ScriptMetadata:
    try:
        return parse_metadata(script.read_text(encoding="utf-8"))
    except OSError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _metadata_dict(meta: ScriptMetadata) -> dict:
    data = asdict(meta)
    data["run_at"] = meta.run_at.value
    return data


@app.command("metadata")
def metadata_command(
    script: Path = typer.Argument(..., help="Userscript file"),
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json"),
):
    """Show the parsed metadata block.

    Examples:
        scriptext inspect metadata my.user.js
        scriptext inspect metadata my.user.js --format json
    """
    meta = _load(script)
    data = _metadata_dict(meta)

    if format == "json":
        typer.echo(json.dumps(data, indent=2))
        return

    for key, value in data.items():
        if isinstance(value, list):
            typer.echo(f"{key}:")
            for item in value:
                typer.echo(f"  - {item}")
        else:
            typer.echo(f"{key}: {value}")


@app.command("permissions")
def permissions_command(
    script: Path = typer.Argument(..., help="Userscript file"),
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json"),
):
    """Show host patterns and API permissions derived from the metadata.

    Examples:
        scriptext inspect permissions my.user.js
    """
    permissions = synthesize_permissions(_load(script))

    if format == "json":
        typer.echo(json.dumps({
            "host_permissions": list(permissions.host_patterns),
            "permissions": list(permissions.api_permissions),
        }, indent=2))
        return

    typer.echo("Host permissions:")
    for pattern in permissions.host_patterns:
        typer.echo(f"  {pattern}")
    typer.echo()
    typer.echo("API permissions:")
    if not permissions.api_permissions:
        typer.echo("  (none)")
    for permission in permissions.api_permissions:
        typer.echo(f"  {permission}")


@app.command("bridge")
def bridge_command(
    script: Path = typer.Argument(..., help="Userscript file"),
    part: str = typer.Option("shim", "--part", "-p", help="Program to print: shim, controller"),
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Print one of the generated bridge programs.

    Examples:
        scriptext inspect bridge my.user.js --part controller
    """
    if part not in ("shim", "controller"):
        typer.echo(f"Error: unknown part '{part}' (expected shim or controller)", err=True)
        raise typer.Exit(1)

    meta = _load(script)
    try:
        config = load_config(config_path)
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    render = generate_shim if part == "shim" else generate_controller
    typer.echo(render(meta, config.bridge), nl=False)
