"""Slack Web API client and activity fetcher."""

from slack_summarizer.slack.client import SlackApiError, SlackClient
from slack_summarizer.slack.fetcher import SlackDataFetcher

__all__ = ["SlackApiError", "SlackClient", "SlackDataFetcher"]
