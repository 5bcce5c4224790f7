"""
Options and helpers shared by CLI commands.
"""
from pathlib import Path

import click

from slack_summarizer.core.models import ProgressEvent


db_option = click.option(
    '--db-path',
    type=click.Path(path_type=Path),
    envvar='SLACK_SUMMARIZER_DB_PATH',
    help='Path to cache database file',
)


def apply_db_path(ctx, db_path):
    """Point the shared context at a non-default cache file."""
    if db_path:
        ctx.obj.db_path = Path(db_path)


def create_progress_callback(verbose: bool = False):
    """
    Progress callback that writes pipeline stages to stderr.

    Per-group summarization events are only shown in verbose mode.
    """

    def callback(event: ProgressEvent):
        if event.current and event.total:
            if verbose:
                click.echo(f"  [{event.current}/{event.total}] {event.message}", err=True)
            return
        click.secho(f"{event.stage.value.capitalize()}: {event.message}", fg='cyan', err=True)

    return callback


def echo_error(ctx, message: str):
    """Print an error in red, with the traceback when verbose."""
    click.secho(message, fg='red', err=True)
    if ctx.obj.verbose:
        import traceback
        click.echo(traceback.format_exc(), err=True)
