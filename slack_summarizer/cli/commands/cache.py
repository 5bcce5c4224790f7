"""
Cache maintenance commands.
"""
import click

from slack_summarizer.cli.common import apply_db_path, db_option, echo_error


@click.group()
def cache():
    """Inspect or clear the local Slack cache."""


@cache.command('stats')
@db_option
@click.pass_context
def stats(ctx, db_path):
    """Show row counts for the cache database."""
    apply_db_path(ctx, db_path)
    try:
        counts = ctx.obj.get_db().stats()
    except Exception as e:
        echo_error(ctx, f"Error reading cache: {e}")
        raise click.Abort()

    click.echo(f"Cache: {counts.pop('db_path')}")
    for name, count in counts.items():
        click.echo(f"  {name.replace('_', ' ').capitalize()}: {count}")


@cache.command('clear')
@db_option
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def clear(ctx, db_path, yes):
    """Delete all cached Slack data and embeddings."""
    apply_db_path(ctx, db_path)
    if not yes:
        click.confirm('Delete all cached data?', abort=True)
    try:
        ctx.obj.get_db().clear()
    except Exception as e:
        echo_error(ctx, f"Error clearing cache: {e}")
        raise click.Abort()
    click.secho("Cache cleared", fg='green')
