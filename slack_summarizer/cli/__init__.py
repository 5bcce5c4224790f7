"""
Click-based command line interface.

    slack-summarizer summarize yesterday
    slack-summarizer summarize 2024-01-01..2024-01-07 --output week.json
    slack-summarizer cache stats
    slack-summarizer config show
"""
import logging
import os
from pathlib import Path
from typing import Optional

import click

from slack_summarizer import __version__
from slack_summarizer.cache.database import CacheDatabase
from slack_summarizer.cli.commands.cache import cache
from slack_summarizer.cli.commands.config import config
from slack_summarizer.cli.commands.summarize import summarize
from slack_summarizer.core.config import get_default_db_path


class CLIContext:
    """State shared by all commands through ``ctx.obj``."""

    def __init__(self, verbose: bool = False, db_path: Optional[Path] = None):
        self.verbose = verbose
        self.db_path = db_path
        self._db: Optional[CacheDatabase] = None

    def get_db(self) -> CacheDatabase:
        """Open the cache on first use."""
        if self._db is None:
            self._db = CacheDatabase(str(self.db_path or get_default_db_path()))
        return self._db

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None


@click.group()
@click.version_option(__version__, prog_name='slack-summarizer')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def main(ctx, verbose):
    """Summarize your Slack activity into topic narratives."""
    logging.basicConfig(
        level="DEBUG" if verbose else os.getenv("SLACK_SUMMARIZER_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = CLIContext(verbose=verbose)
    ctx.call_on_close(ctx.obj.close)


main.add_command(summarize)
main.add_command(cache)
main.add_command(config)
