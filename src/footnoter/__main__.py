"""CLI entry point for Footnoter."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from footnoter import __version__
from footnoter.config import Config, ConfigError, load_config
from footnoter.engine.orchestrator import Orchestrator
from footnoter.events.bus import Event, EventBus
from footnoter.events.types import (
    CHUNK_COMPLETED,
    CHUNK_FAILED,
    CHUNK_SHRINKING,
    DOCUMENT_STARTED,
)
from footnoter.exceptions import FootnoterError
from footnoter.models.responses import ResponsesStreamingCaller


def _configure_logging(config: Config, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.logging.level, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Per-request transport chatter drowns the chunk progress lines.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _progress_printer(event: Event) -> None:
    data = event.data
    if event.event_type == DOCUMENT_STARTED:
        click.echo(f"{event.document}: {data.get('chunks', 0)} chunk(s), genre {data.get('genre')}")
    elif event.event_type == CHUNK_SHRINKING:
        click.echo(f"  chunk {data['index']}: splitting into {data['subchunks']} sub-chunks")
    elif event.event_type == CHUNK_COMPLETED:
        suffix = " (shrunk)" if data.get("shrunk") else ""
        click.echo(f"  chunk {data['index']}: done after {data.get('attempts', 0)} attempt(s){suffix}")
    elif event.event_type == CHUNK_FAILED:
        click.echo(f"  chunk {data['index']}: failed: {data.get('error')}", err=True)


async def _annotate(
    config: Config,
    input_path: Path,
    output_path: Path | None,
    resume: bool,
    force: bool,
    genre: str | None,
) -> Path:
    caller = ResponsesStreamingCaller(config.model, config.timeout_seconds)
    bus = EventBus()
    bus.subscribe_all(_progress_printer)
    orchestrator = Orchestrator(config, caller, event_bus=bus)
    try:
        return await orchestrator.run(
            input_path,
            output_path=output_path,
            resume=resume,
            force=force,
            genre=genre,
        )
    finally:
        await caller.close()


@click.group()
@click.version_option(version=__version__, prog_name="footnoter")
def cli() -> None:
    """Footnoter: learner footnotes for English manuscripts."""


@cli.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to footnoter.toml configuration file.",
)
@click.option("--no-resume", is_flag=True, help="Ignore cached chunks and annotate everything again.")
@click.option("--chunk-tokens", type=click.IntRange(min=1), default=None, help="Token budget per chunk.")
@click.option("--keep-chunks", is_flag=True, help="Keep the chunk cache after success.")
@click.option(
    "--output", "-o",
    "output_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output file. Defaults to <input>_annotated.md next to the input.",
)
@click.option("--force", is_flag=True, help="Overwrite the output file if it exists.")
@click.option("--genre", default=None, help="Skip genre detection and use this genre.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def annotate(
    input_path: Path,
    config_path: Path | None,
    no_resume: bool,
    chunk_tokens: int | None,
    keep_chunks: bool,
    output_path: Path | None,
    force: bool,
    genre: str | None,
    verbose: bool,
) -> None:
    """Annotate INPUT_PATH with tagged learner footnotes."""
    try:
        config = load_config(config_path).with_overrides(
            chunk_tokens=chunk_tokens,
            keep_chunks=keep_chunks or None,
        )
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    _configure_logging(config, verbose)
    if not config.model.api_key:
        click.echo(
            "Configuration error: no API key (set OPENAI_API_KEY or [model] api_key)",
            err=True,
        )
        sys.exit(1)

    try:
        result = asyncio.run(_annotate(
            config,
            input_path,
            output_path,
            resume=not no_resume,
            force=force,
            genre=genre,
        ))
    except FootnoterError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Annotated output saved to: {result}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
