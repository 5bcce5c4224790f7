"""
Configuration commands.
"""
import click
from pydantic import ValidationError

from slack_summarizer.core.config import Settings


@click.group()
def config():
    """Inspect configuration."""


@config.command('show')
def show():
    """Print the effective settings with credentials masked."""
    try:
        settings = Settings.from_env()
    except ValidationError as e:
        click.secho(f"Invalid configuration:\n{e}", fg='red', err=True)
        raise click.Abort()

    for key, value in settings.masked().items():
        if key == 'db_path' and value is None:
            value = f"{settings.resolved_db_path()} (default)"
        click.echo(f"{key}: {value if value is not None else '(not set)'}")
