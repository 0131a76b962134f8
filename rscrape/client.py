"""Transport and endpoint helpers for the Reddit public JSON API."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List
from urllib.parse import quote

import requests

from .core import (
    KIND_COMMENT,
    KIND_POST,
    Comment,
    Post,
    RScrapeError,
    Subreddit,
    assemble_page,
    decode_envelope,
    extract_subreddit,
    is_valid_identifier,
)

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "rscrape_python_tool/v0.1"
BASE_URL = "https://www.reddit.com"
DEFAULT_TIMEOUT = 30.0

LISTING_TYPE_NEW = "new"
LISTING_TYPE_HOT = "hot"
LISTING_TYPE_TOP = "top"
LISTING_TYPES = (LISTING_TYPE_NEW, LISTING_TYPE_HOT, LISTING_TYPE_TOP)

TOP_ALL_TIME = "all"
TOP_WINDOWS = ("hour", "day", "week", "month", "year", TOP_ALL_TIME)


class FetchError(RScrapeError, RuntimeError):
    """The transport failed to retrieve a response body."""


@dataclass(slots=True)
class ClientOptions:
    """Request settings shared by every call made through one session."""

    user_agent: str = DEFAULT_USER_AGENT
    verify: bool = True
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        self.user_agent = (self.user_agent or "").strip()
        if not self.user_agent:
            raise ValueError("A non-empty User-Agent is required")
        self.timeout = max(float(self.timeout), 1.0)


def build_session(user_agent: str = DEFAULT_USER_AGENT, verify: bool = True) -> requests.Session:
    session = requests.Session()
    session.headers.update(
        {
            "User-Agent": user_agent,
            "Accept": "application/json",
        }
    )
    session.verify = verify
    return session


def fetch_bytes(
    session: requests.Session,
    url: str,
    *,
    params: dict | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> bytes:
    logger.info("Fetching %s", url)
    try:
        response = session.get(url, params=params, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as exc:
        raise FetchError(f"Failed to fetch {url!r}: {exc}") from exc
    return response.content


def _segment(value: str) -> str:
    return quote(value, safe="")


def subreddit_url(subreddit: str) -> str:
    return f"{BASE_URL}/r/{_segment(subreddit)}/about.json"


def posts_url(
    subreddit: str,
    listing_type: str,
    after: str = "",
    top_window: str = TOP_ALL_TIME,
) -> tuple[str, dict[str, Any]]:
    if listing_type not in LISTING_TYPES:
        raise ValueError(f"Unsupported listing type: {listing_type}")
    params: dict[str, Any] = {"raw_json": 1}
    if is_valid_identifier(after):
        params["after"] = after
    if listing_type == LISTING_TYPE_TOP:
        params["t"] = top_window if top_window in TOP_WINDOWS else TOP_ALL_TIME
    return f"{BASE_URL}/r/{_segment(subreddit)}/{listing_type}.json", params


def comments_url(subreddit: str, post_id: str, after: str = "") -> tuple[str, dict[str, Any]]:
    if post_id.startswith("t3_"):
        post_id = post_id[3:]
    params: dict[str, Any] = {"raw_json": 1}
    if is_valid_identifier(after):
        params["after"] = after
    return f"{BASE_URL}/r/{_segment(subreddit)}/comments/{_segment(post_id)}.json", params


def get_subreddit(
    session: requests.Session,
    subreddit: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
) -> Subreddit:
    body = fetch_bytes(session, subreddit_url(subreddit), params={"raw_json": 1}, timeout=timeout)
    return extract_subreddit(decode_envelope(body))


def get_posts(
    session: requests.Session,
    subreddit: str,
    listing_type: str,
    after: str = "",
    top_window: str = TOP_ALL_TIME,
    *,
    timeout: float = DEFAULT_TIMEOUT,
) -> tuple[List[Post], str]:
    """Fetch one page of posts; the returned token is ``""`` on the last page."""
    url, params = posts_url(subreddit, listing_type, after, top_window)
    page = assemble_page(fetch_bytes(session, url, params=params, timeout=timeout), KIND_POST)
    return page.children, page.after


def get_comments(
    session: requests.Session,
    subreddit: str,
    post_id: str,
    after: str = "",
    *,
    timeout: float = DEFAULT_TIMEOUT,
) -> tuple[List[Comment], List[str]]:
    """Fetch the comments of a post, flattened depth-first.

    The second element holds the tokens of top-level comments that were not
    returned inline. Tokens for deeper subtrees stay on the comment they were
    nested under (``Comment.replies_after``).
    """
    url, params = comments_url(subreddit, post_id, after)
    page = assemble_page(fetch_bytes(session, url, params=params, timeout=timeout), KIND_COMMENT)
    return page.children, page.more


def collect_posts(
    session: requests.Session,
    subreddit: str,
    listing_type: str,
    *,
    pages: int = 1,
    after: str = "",
    top_window: str = TOP_ALL_TIME,
    timeout: float = DEFAULT_TIMEOUT,
) -> tuple[List[Post], str]:
    """Follow the ``after`` cursor for up to ``pages`` pages."""
    collected: List[Post] = []
    cursor = after
    fetched_pages = 0
    while fetched_pages < max(pages, 1):
        posts, cursor = get_posts(
            session,
            subreddit,
            listing_type,
            cursor,
            top_window,
            timeout=timeout,
        )
        collected.extend(posts)
        fetched_pages += 1
        if not cursor:
            break
    logger.info(
        "Collected %d post(s) from r/%s %s across %d page(s)",
        len(collected),
        subreddit,
        listing_type,
        fetched_pages,
    )
    return collected, cursor


__all__ = [
    "BASE_URL",
    "ClientOptions",
    "DEFAULT_TIMEOUT",
    "DEFAULT_USER_AGENT",
    "FetchError",
    "LISTING_TYPES",
    "LISTING_TYPE_HOT",
    "LISTING_TYPE_NEW",
    "LISTING_TYPE_TOP",
    "TOP_ALL_TIME",
    "TOP_WINDOWS",
    "build_session",
    "collect_posts",
    "comments_url",
    "fetch_bytes",
    "get_comments",
    "get_posts",
    "get_subreddit",
    "posts_url",
    "subreddit_url",
]
