"""gridlens command-line entry point."""

from __future__ import annotations

import curses
import logging

import click

from gridlens.app import App, run
from gridlens.config import load_config
from gridlens.engine.scheduler import ExecutionScheduler
from gridlens.engine.workspace import Workspace
from gridlens.errors import GridLensError
from gridlens.models.sources import SOURCE_TYPES, Source
from gridlens.terminal import CursesTerminal

logger = logging.getLogger(__name__)


def configure_logging(log_file, level: str) -> None:
    # the UI owns the terminal: log to a file or not at all
    if log_file is None:
        logging.getLogger("gridlens").addHandler(logging.NullHandler())
        return
    logging.basicConfig(
        filename=log_file,
        level=getattr(logging, level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("paths", nargs=-1, required=True, type=click.Path(dir_okay=False))
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), help="YAML settings file.")
@click.option("--type", "source_type", type=click.Choice(SOURCE_TYPES), help="Format of every PATH (default: by extension).")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Write a debug log here.")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="info",
    show_default=True,
)
def cli(paths, config_path, source_type, log_file, log_level):
    """Browse and query tabular files in the terminal."""
    configure_logging(log_file, log_level)
    try:
        config = load_config(config_path)
        sources = [Source(p, source_type) for p in paths]
        for s in sources:
            s.preflight()
    except GridLensError as e:
        raise click.ClickException(str(e)) from e

    scheduler = ExecutionScheduler(config.workers)
    workspace = Workspace(scheduler, config)
    for s in sources:
        workspace.open_source(s)

    def session(stdscr) -> App:
        terminal = CursesTerminal(stdscr)
        app = App(workspace, size=terminal.size())
        run(app, terminal)
        return app

    try:
        curses.wrapper(session)
    finally:
        scheduler.shutdown()
    if workspace.status and not workspace.tabs:
        # the session ended because nothing could be opened
        raise click.ClickException(workspace.status)


def main():
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
