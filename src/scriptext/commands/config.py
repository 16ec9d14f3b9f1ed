# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Config command for scriptext.

Provides configuration validation and display.
"""

import typer

from scriptext.config import load_config

app = typer.Typer(help="Manage and validate configuration")


@app.command()
def validate(
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """
    Validate configuration file.

    Checks that the config file exists, is valid YAML and has valid values.
    """
    typer.echo("Validating configuration...")
    typer.echo()

    try:
        config = load_config(config_path)
        if config.source is None:
            typer.echo("No config file found, using defaults")
        else:
            typer.echo(f"Config file: {config.source}")
            typer.echo("Configuration structure is valid")
        typer.echo()
        typer.echo("Configuration validation complete!")
    except FileNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except Exception as e:
        typer.echo(f"Validation failed: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def show(
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Show the effective configuration."""
    try:
        config = load_config(config_path)
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Source: {config.source or '(defaults)'}")
    typer.echo("Bridge:")
    typer.echo(f"  send_attempts: {config.bridge.send_attempts}")
    typer.echo(f"  retry_base_delay_ms: {config.bridge.retry_base_delay_ms}")
    typer.echo("Manifest:")
    typer.echo(f"  minimum_chrome_version: {config.manifest.minimum_chrome_version}")
    typer.echo(f"  gecko_id: {config.manifest.gecko_id or '-'}")
    typer.echo(f"  default_name: {config.manifest.default_name}")
    typer.echo(f"Icons: {', '.join(str(s) for s in config.icon_sizes)}")
