"""Command-line interface for BAR.

This module defines the CLI commands using Click framework.

Commands:
- build: Build the site into the configured dist directory.
- clear: Remove the artifact cache and the dist directory.
- article: Create a new draft article in the current directory.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

import click
import yaml

from . import __version__

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def _log_level(verbose: int, quiet: bool) -> int:
    if quiet:
        return logging.ERROR
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    return logging.WARNING


@click.group()
@click.version_option(version=__version__, prog_name="bar")
@click.option("-v", "--verbose", count=True, help="Increase log output (-vv for debug)")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
def cli(verbose: int, quiet: bool):
    """BAR static site generator."""
    logging.basicConfig(level=_log_level(verbose, quiet), format=LOG_FORMAT)


@cli.command()
@click.argument(
    "path",
    required=False,
    default=".",
    type=click.Path(file_okay=False, path_type=Path),
)
def build(path: Path):
    """Build the site into the dist directory."""
    project_root = path.resolve()
    from .build import BuildError, build_site

    try:
        result = build_site(project_root)
    except BuildError as exc:
        try:
            shown = exc.source_path.relative_to(project_root)
        except ValueError:
            shown = exc.source_path
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  File: {shown}", fg="yellow"), err=True)
        click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
        raise SystemExit(1) from None
    click.echo(f"Built {len(result.pages)} pages into {result.output_dir}")


@cli.command()
@click.argument(
    "path",
    required=False,
    default=".",
    type=click.Path(file_okay=False, path_type=Path),
)
def clear(path: Path):
    """Remove the artifact cache and the dist directory."""
    project_root = path.resolve()
    from .cache import clear_cache
    from .config import ConfigError, load_config
    from .utils import remove_dir

    try:
        config = load_config(project_root)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from None
    if clear_cache(project_root):
        click.echo("Cleared cache")
    if remove_dir(config.dist_path):
        click.echo(f"Removed {config.dist_path}")


@cli.command()
@click.argument("title")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def article(title: str, force: bool):
    """Create a new draft article named after TITLE."""
    title = title.strip()
    if not title:
        raise click.ClickException("Title cannot be empty")
    target_path = Path.cwd() / f"{title}.md"
    if target_path.exists() and not force:
        raise click.ClickException(
            f"File already exists: {target_path.name} (use --force to overwrite)"
        )
    frontmatter = {
        "title": title,
        "date": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
        "tags": [],
        "is_draft": True,
    }
    content = f"---\n{yaml.safe_dump(frontmatter, sort_keys=False)}---\n\n"
    target_path.write_text(content, encoding="utf-8")
    click.echo(f"Created {target_path.name}")


def main():
    """Entry point for the CLI application."""
    cli()
