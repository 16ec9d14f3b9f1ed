# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Main CLI entry point for scriptext.

Dumb trigger: reads the script (and icon), builds the bundle, writes it.
No conversion logic here - it all lives in the packager and its modules.
"""

import logging
from pathlib import Path
from typing import Optional

import typer

from scriptext import ScriptextError, __version__
from scriptext.config import load_config
from scriptext.packager import Overrides, build_bundle


app = typer.Typer(
    name="scriptext",
    help="Convert userscripts into Manifest V3 browser extensions",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Convert userscripts into Manifest V3 browser extensions."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def convert(
    script: Path = typer.Argument(..., help="Userscript file (.user.js)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Zip path (default: <name>-extension.zip)"),
    directory: Optional[Path] = typer.Option(None, "--dir", help="Write an unpacked extension directory instead"),
    icon: Optional[Path] = typer.Option(None, "--icon", help="Icon image to resize for the extension"),
    description: Optional[str] = typer.Option(None, "--description", help="Override @description"),
    author: Optional[str] = typer.Option(None, "--author", help="Override @author"),
    homepage: Optional[str] = typer.Option(None, "--homepage", help="Override @homepage"),
    support: Optional[str] = typer.Option(None, "--support", help="Override @supportURL"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Convert a userscript into an extension zip (or directory)."""
    try:
        config = load_config(config_path)
        script_text = script.read_text(encoding="utf-8")
        icon_data = icon.read_bytes() if icon else None
        icon_ext = icon.suffix.lstrip(".") if icon else None

        bundle = build_bundle(
            script_text,
            icon=icon_data,
            icon_ext=icon_ext,
            overrides=Overrides(
                description=description,
                author=author,
                homepage=homepage,
                support=support,
            ),
            config=config,
        )

        if directory:
            target = bundle.write_directory(directory)
        else:
            target = bundle.write_zip(output or Path(bundle.archive_name))

    except (ScriptextError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Wrote {target}")
    typer.echo(
        "Load it as an extension, then click its toolbar icon once to grant "
        "the userScripts permission."
    )


@app.command()
def version():
    """Show version information."""
    typer.echo(f"scriptext version {__version__}")


# Static commands (inspect, config)
from scriptext.commands import config, inspect

app.add_typer(inspect.app, name="inspect")
app.add_typer(config.app, name="config")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
