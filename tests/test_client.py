from __future__ import annotations

import json

import pytest
import requests

import rscrape.client as client
from rscrape.client import (
    BASE_URL,
    ClientOptions,
    FetchError,
    build_session,
    collect_posts,
    comments_url,
    fetch_bytes,
    get_comments,
    get_posts,
    get_subreddit,
    posts_url,
    subreddit_url,
)
from rscrape.core import TypeMismatch


class FakeResponse:
    def __init__(self, payload, *, status_code: int = 200) -> None:
        self.content = json.dumps(payload).encode("utf-8")
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(str(self.status_code))


class FakeSession:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, dict | None]] = []

    def get(self, url: str, *, params=None, timeout=None):  # noqa: D401 - signature matches requests
        self.calls.append((url, params))
        assert self.responses, f"Unexpected request to {url}"
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def post_child(post_id: str) -> dict:
    return {"kind": "t3", "data": {"id": post_id, "title": f"Post {post_id}", "created_utc": 1700000000}}


def comment_child(comment_id: str, replies="") -> dict:
    return {
        "kind": "t1",
        "data": {"id": comment_id, "body": "hi", "created_utc": 1700000000, "replies": replies},
    }


def listing(children, after=None) -> dict:
    return {"kind": "Listing", "data": {"after": after, "children": children}}


def test_build_session_sets_headers():
    session = build_session("rscrape-tests/1.0", verify=False)

    assert session.headers["User-Agent"] == "rscrape-tests/1.0"
    assert session.headers["Accept"] == "application/json"
    assert session.verify is False


def test_client_options_validates_values():
    options = ClientOptions(user_agent="  agent/1.0 ", timeout=0.1)

    assert options.user_agent == "agent/1.0"
    assert options.timeout == 1.0

    with pytest.raises(ValueError):
        ClientOptions(user_agent="   ")


def test_subreddit_url():
    assert subreddit_url("python") == f"{BASE_URL}/r/python/about.json"


def test_posts_url_only_forwards_valid_tokens():
    url, params = posts_url("python", "new", after="t3_abc12")
    assert url == f"{BASE_URL}/r/python/new.json"
    assert params == {"raw_json": 1, "after": "t3_abc12"}

    _, params = posts_url("python", "hot", after="garbage")
    assert "after" not in params


def test_posts_url_top_window_defaults_to_all():
    _, params = posts_url("python", "top", top_window="week")
    assert params["t"] == "week"

    _, params = posts_url("python", "top", top_window="decade")
    assert params["t"] == "all"

    _, params = posts_url("python", "new", top_window="week")
    assert "t" not in params


def test_posts_url_rejects_unknown_listing():
    with pytest.raises(ValueError):
        posts_url("python", "sideways")


def test_comments_url_strips_post_prefix():
    url, params = comments_url("python", "t3_abc123", after="t1_zzzzz")

    assert url == f"{BASE_URL}/r/python/comments/abc123.json"
    assert params["after"] == "t1_zzzzz"


def test_fetch_bytes_wraps_transport_errors():
    session = FakeSession(requests.exceptions.ConnectionError("boom"))

    with pytest.raises(FetchError) as excinfo:
        fetch_bytes(session, f"{BASE_URL}/r/python/about.json")

    assert isinstance(excinfo.value.__cause__, requests.exceptions.ConnectionError)


def test_fetch_bytes_raises_on_http_error():
    session = FakeSession(FakeResponse({"message": "Not Found", "error": 404}, status_code=404))

    with pytest.raises(FetchError):
        fetch_bytes(session, f"{BASE_URL}/r/missing/about.json")


def test_get_subreddit_decodes_record():
    session = FakeSession(
        FakeResponse({"kind": "t5", "data": {"id": "2qh0u", "display_name": "python", "created_utc": 1201233135}})
    )

    subreddit = get_subreddit(session, "python")

    assert subreddit.display_name == "python"
    assert subreddit.created_on.year == 2008
    assert session.calls[0][0] == f"{BASE_URL}/r/python/about.json"


def test_get_subreddit_rejects_other_kinds():
    session = FakeSession(FakeResponse(listing([])))

    with pytest.raises(TypeMismatch):
        get_subreddit(session, "python")


def test_get_posts_returns_next_token():
    session = FakeSession(FakeResponse(listing([post_child("aaa11"), post_child("bbb22")], after="t3_bbb22")))

    posts, after = get_posts(session, "python", "top", top_window="day")

    assert [p.id for p in posts] == ["aaa11", "bbb22"]
    assert after == "t3_bbb22"
    assert session.calls[0][1]["t"] == "day"


def test_get_comments_flattens_tree():
    body = [
        listing([post_child("abc123")]),
        listing(
            [
                comment_child("c0001", replies=listing([comment_child("c0002")])),
                comment_child("c0003"),
                {"kind": "more", "data": {"children": ["t1_later"]}},
            ]
        ),
    ]
    session = FakeSession(FakeResponse(body))

    comments, more = get_comments(session, "python", "t3_abc123")

    assert [c.id for c in comments] == ["c0001", "c0002", "c0003"]
    assert more == ["t1_later"]
    assert session.calls[0][0].endswith("/comments/abc123.json")


def test_collect_posts_follows_cursor_until_exhausted():
    session = FakeSession(
        FakeResponse(listing([post_child("aaa11")], after="t3_aaa11")),
        FakeResponse(listing([post_child("bbb22")], after="")),
    )

    posts, after = collect_posts(session, "python", "new", pages=5)

    assert [p.id for p in posts] == ["aaa11", "bbb22"]
    assert after == ""
    assert "after" not in session.calls[0][1]
    assert session.calls[1][1]["after"] == "t3_aaa11"


def test_collect_posts_stops_at_page_budget(monkeypatch):
    calls: list[str] = []

    def fake_get_posts(session, subreddit, listing_type, after="", top_window="all", *, timeout=30.0):
        calls.append(after)
        return [], f"t3_page{len(calls)}"

    monkeypatch.setattr(client, "get_posts", fake_get_posts)

    posts, after = collect_posts(object(), "python", "hot", pages=2, after="t3_start")

    assert posts == []
    assert calls == ["t3_start", "t3_page1"]
    assert after == "t3_page2"


def test_urls_quote_path_segments():
    assert subreddit_url("python/new.json?x=1") == f"{BASE_URL}/r/python%2Fnew.json%3Fx%3D1/about.json"

    url, _ = posts_url("a/b", "new")
    assert url == f"{BASE_URL}/r/a%2Fb/new.json"

    url, _ = comments_url("python", "t3_abc/../def")
    assert url == f"{BASE_URL}/r/python/comments/abc%2F..%2Fdef.json"
