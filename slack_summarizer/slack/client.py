"""
Slack Web API client.

A thin wrapper over ``slack_sdk.WebClient`` covering the endpoints the
fetcher needs. Rate-limit, server and connection errors are retried by the
SDK's retry handlers; ``Retry-After`` is honoured on HTTP 429.
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional
from urllib.error import URLError

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError as SdkApiError
from slack_sdk.http_retry.builtin_handlers import (
    ConnectionErrorRetryHandler,
    RateLimitErrorRetryHandler,
    ServerErrorRetryHandler,
)

from slack_summarizer.core.config import resolve_secret
from slack_summarizer.core.models import Channel, Message, Reaction, TimeRange

logger = logging.getLogger(__name__)

PAGE_LIMIT = 200
SEARCH_PAGE_SIZE = 100
DEFAULT_TIMEOUT = 30
SERVER_ERROR_RETRIES = 2


class SlackApiError(RuntimeError):
    """A Slack API call failed."""

    def __init__(self, method: str, error: str):
        super().__init__(f"Slack API {method} failed: {error}")
        self.method = method
        self.error = error


def _error_code(e: SdkApiError) -> str:
    try:
        code = e.response.get("error")
    except (AttributeError, TypeError, ValueError):
        code = None
    return code or str(e)


class SlackClient:
    """
    Slack Web API client authenticated with a user token.

    Parameters
    ----------
    token : str, optional
        User token (xoxp-...). If None, resolves from SLACK_USER_TOKEN or dlt secrets.
    max_retries : int
        Retries for rate-limited calls and connection failures.

    Raises
    ------
    ValueError
        If no token can be resolved.
    """

    def __init__(self, token: Optional[str] = None, max_retries: int = 5):
        token = resolve_secret("SLACK_USER_TOKEN", token)
        if not token:
            raise ValueError(
                "Slack token must be provided via parameter, SLACK_USER_TOKEN env var, "
                "or dlt secrets at sources.slack_summarizer"
            )
        self.web = WebClient(
            token=token,
            timeout=DEFAULT_TIMEOUT,
            retry_handlers=[
                RateLimitErrorRetryHandler(max_retry_count=max_retries),
                ServerErrorRetryHandler(max_retry_count=SERVER_ERROR_RETRIES),
                ConnectionErrorRetryHandler(max_retry_count=max_retries),
            ],
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _api_call(self, method: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        """
        Call one Web API method through the SDK.

        Parameters
        ----------
        method : str
            API method name, for errors and logs (e.g., 'conversations.history')
        func : callable
            Bound ``WebClient`` method
        **kwargs
            Method arguments; None values are dropped

        Returns
        -------
        SlackResponse
            Response with ``ok`` true

        Raises
        ------
        SlackApiError
            On an API error, or once the SDK has exhausted its retries
        """
        try:
            return func(**{k: v for k, v in kwargs.items() if v is not None})
        except SdkApiError as e:
            raise SlackApiError(method, _error_code(e)) from e
        except (URLError, ConnectionError) as e:
            logger.warning("Slack %s unreachable after retries: %s", method, e)
            raise SlackApiError(method, str(e)) from e

    def _paginate_cursor(
        self, method: str, func: Callable[..., Any], key: str, **kwargs: Any
    ) -> Iterator[Dict[str, Any]]:
        cursor = None
        while True:
            resp = self._api_call(method, func, cursor=cursor, **kwargs)
            yield from resp.get(key) or []
            cursor = (resp.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                break

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def auth_test(self) -> str:
        """ID of the user the token belongs to."""
        return self._api_call("auth.test", self.web.auth_test)["user_id"]

    def conversation_history(self, channel_id: str, oldest: float, latest: float) -> List[Message]:
        pages = self._paginate_cursor(
            "conversations.history",
            self.web.conversations_history,
            "messages",
            channel=channel_id,
            oldest=f"{oldest:.6f}",
            latest=f"{latest:.6f}",
            limit=PAGE_LIMIT,
        )
        return sorted((Message.from_slack(m, channel_id) for m in pages), key=lambda m: m.timestamp)

    def conversation_replies(self, channel_id: str, thread_ts: str) -> List[Message]:
        pages = self._paginate_cursor(
            "conversations.replies",
            self.web.conversations_replies,
            "messages",
            channel=channel_id,
            ts=thread_ts,
            limit=PAGE_LIMIT,
        )
        return [Message.from_slack(m, channel_id) for m in pages]

    def conversation_info(self, channel_id: str) -> Channel:
        resp = self._api_call("conversations.info", self.web.conversations_info, channel=channel_id)
        return Channel.from_slack(resp["channel"])

    def search_messages(self, query: str, time_range: Optional[TimeRange] = None) -> List[Message]:
        """
        Run ``search.messages`` across all result pages.

        With a time range, ``after:``/``before:`` date filters are added
        (both exclusive in Slack) and results are trimmed to the exact range.
        """
        full_query = query
        if time_range is not None:
            after = (time_range.start - timedelta(days=1)).strftime("%Y-%m-%d")
            before = (time_range.end + timedelta(days=1)).strftime("%Y-%m-%d")
            full_query += f" after:{after} before:{before}"

        messages: List[Message] = []
        page = 1
        while True:
            resp = self._api_call(
                "search.messages",
                self.web.search_messages,
                query=full_query,
                sort="timestamp",
                sort_dir="asc",
                count=SEARCH_PAGE_SIZE,
                page=page,
            )
            block = resp.get("messages") or {}
            for match in block.get("matches") or []:
                if not match.get("ts"):
                    continue
                messages.append(Message.from_slack(match))
            paging = block.get("paging") or {}
            if not paging.get("pages") or page >= paging["pages"]:
                break
            page += 1

        if time_range is not None:
            messages = [m for m in messages if time_range.oldest <= m.timestamp < time_range.latest]
        logger.info("Search '%s' returned %d messages", full_query, len(messages))
        return messages

    def search_user_messages(self, user_id: str, time_range: TimeRange) -> List[Message]:
        return self.search_messages(f"from:<@{user_id}>", time_range)

    def search_mentions(self, user_id: str, time_range: TimeRange) -> List[Message]:
        return self.search_messages(f"<@{user_id}>", time_range)

    def reactions_given(self, user_id: str, time_range: TimeRange) -> List[Reaction]:
        reactions: List[Reaction] = []
        page = 1
        while True:
            resp = self._api_call(
                "reactions.list",
                self.web.reactions_list,
                user=user_id,
                count=SEARCH_PAGE_SIZE,
                page=page,
                full=True,
            )
            for item in resp.get("items") or []:
                message = item.get("message") or {}
                ts = message.get("ts")
                if item.get("type") != "message" or not ts:
                    continue
                if not time_range.oldest <= float(ts) < time_range.latest:
                    continue
                for reaction in message.get("reactions") or []:
                    if user_id in (reaction.get("users") or []) and reaction.get("name"):
                        reactions.append(Reaction(channel=item.get("channel", ""), message_ts=ts, name=reaction["name"]))
            paging = resp.get("paging") or {}
            if not paging.get("pages") or page >= paging["pages"]:
                break
            page += 1
        logger.info("Found %d reactions given by %s", len(reactions), user_id)
        return reactions

    def get_permalink(self, channel_id: str, message_ts: str) -> str:
        resp = self._api_call("chat.getPermalink", self.web.chat_getPermalink, channel=channel_id, message_ts=message_ts)
        return resp["permalink"]

    def get_message(self, channel_id: str, ts: str) -> Optional[Message]:
        """Fetch one message by channel and timestamp."""
        resp = self._api_call(
            "conversations.replies",
            self.web.conversations_replies,
            channel=channel_id,
            ts=ts,
            latest=ts,
            inclusive=True,
            limit=1,
        )
        for payload in resp.get("messages") or []:
            if payload.get("ts") == ts:
                return Message.from_slack(payload, channel_id)
        return None

    def list_users(self) -> Dict[str, str]:
        """User ID to display name (real name, then display name, then handle)."""
        names: Dict[str, str] = {}
        for user in self._paginate_cursor("users.list", self.web.users_list, "members", limit=PAGE_LIMIT):
            names[user["id"]] = display_name(user)
        logger.info("Listed %d users", len(names))
        return names

    def user_display_name(self, user_id: str) -> str:
        return display_name(self._api_call("users.info", self.web.users_info, user=user_id)["user"])


def display_name(user: Dict[str, Any]) -> str:
    profile = user.get("profile") or {}
    return (
        user.get("real_name")
        or profile.get("real_name")
        or profile.get("display_name")
        or user.get("name")
        or user.get("id", "")
    )
