"""
Summarize command.

Wires the Slack fetcher, Claude backend, optional embeddings and the cache
into a SummaryAggregator and writes the JSON report.
"""
import asyncio
import logging
from pathlib import Path

import click

from slack_summarizer.cli.common import apply_db_path, create_progress_callback, db_option, echo_error
from slack_summarizer.core.concurrency import get_llm_pool
from slack_summarizer.core.config import Settings
from slack_summarizer.embeddings.providers import create_embedding_provider
from slack_summarizer.llm.provider import get_claude_backend
from slack_summarizer.segmentation.semantic import SemanticBoundaryAnalyzer
from slack_summarizer.slack.client import SlackClient
from slack_summarizer.slack.fetcher import SlackDataFetcher
from slack_summarizer.summarization.aggregator import SummaryAggregator
from slack_summarizer.summarization.narrator import NarrativeSummarizer

logger = logging.getLogger(__name__)


def build_aggregator(settings: Settings, cache=None, progress_callback=None) -> SummaryAggregator:
    """
    Assemble the production pipeline from settings.

    Raises
    ------
    ValueError
        If Slack or Claude credentials are missing.
    """
    client = SlackClient(settings.slack_user_token, max_retries=settings.slack_max_retries)
    fetcher = SlackDataFetcher(client, cache=cache, timezone=settings.tz, concurrency=settings.slack_concurrency)

    backend = get_claude_backend(api_key=settings.anthropic_api_key, oauth_token=settings.claude_oauth_token)
    llm_pool = get_llm_pool(settings.claude_concurrency)

    embedding_provider = None
    if settings.enable_embeddings:
        try:
            embedding_provider = create_embedding_provider(settings.embedding_provider, settings.openai_api_key)
        except ValueError as e:
            logger.warning("Embeddings disabled, falling back to reference-only similarity: %s", e)

    return SummaryAggregator(
        fetcher,
        NarrativeSummarizer(
            backend, settings.claude_model, timezone=settings.tz, name_lookup=fetcher.get_user_display_name
        ),
        settings=settings,
        semantic=SemanticBoundaryAnalyzer(backend, settings.claude_model, pool=llm_pool),
        embedding_provider=embedding_provider,
        cache=cache,
        llm_pool=llm_pool,
        progress_callback=progress_callback,
    )


@click.command()
@click.argument('timespan', default='today')
@click.option('--user', 'user_id', help='Slack user ID (defaults to the token owner)')
@click.option('--output', '-o', type=click.Path(dir_okay=False, path_type=Path), help='Write the report to a file')
@click.option(
    '--format',
    'output_format',
    type=click.Choice(['json']),
    default='json',
    help='Output format'
)
@click.option('--no-cache', is_flag=True, help='Skip the local cache and fetch everything from Slack')
@click.option(
    '--embeddings/--no-embeddings',
    default=None,
    help='Use embedding similarity when consolidating (overrides SLACK_SUMMARIZER_ENABLE_EMBEDDINGS)'
)
@click.option('--verbose', '-v', is_flag=True, help='Show per-topic progress and debug logging')
@db_option
@click.pass_context
def summarize(ctx, timespan, user_id, output, output_format, no_cache, embeddings, verbose, db_path):
    """
    Summarize Slack activity for TIMESPAN.

    TIMESPAN is today, yesterday, last-week, YYYY-MM-DD or
    YYYY-MM-DD..YYYY-MM-DD (default: today).
    """
    if verbose:
        ctx.obj.verbose = True
        logging.getLogger().setLevel(logging.DEBUG)
    apply_db_path(ctx, db_path)

    try:
        settings = Settings.from_env(
            db_path=str(ctx.obj.db_path) if ctx.obj.db_path else None,
            enable_embeddings=embeddings,
        )
        cache = None if no_cache else ctx.obj.get_db()
        aggregator = build_aggregator(settings, cache, create_progress_callback(ctx.obj.verbose))
        report = asyncio.run(aggregator.generate_summary(timespan, user_id=user_id))
    except Exception as e:
        echo_error(ctx, f"Error generating summary: {e}")
        raise click.Abort()

    text = report.model_dump_json(indent=2)
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text + '\n', encoding='utf-8')
        click.secho(
            f"Wrote {report.topic_count()} topics across {len(report.channels)} channels to {output}",
            fg='green',
            err=True,
        )
    else:
        click.echo(text)
