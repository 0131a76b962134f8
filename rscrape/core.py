"""Envelope decoding, listing extraction and comment-tree flattening for rscrape."""
from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Mapping

logger = logging.getLogger(__name__)

KIND_LISTING = "Listing"
KIND_COMMENT = "t1"
KIND_POST = "t3"
KIND_SUBREDDIT = "t5"
KIND_MORE = "more"

IDENTIFIER_PATTERN = re.compile(r"t[135]_[A-Za-z0-9]{5,9}")


class RScrapeError(Exception):
    """Base class for every error raised by rscrape."""


class DecodeError(RScrapeError, ValueError):
    """A response body could not be decoded into the expected shape."""


class MalformedEnvelope(DecodeError):
    pass


class MalformedPayload(DecodeError):
    pass


class TypeMismatch(DecodeError):
    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected API object of kind {expected!r}, got {actual!r}")


class UnexpectedTreeNode(DecodeError):
    pass


class NoCommentListingFound(DecodeError):
    pass


@dataclass(frozen=True, slots=True)
class Envelope:
    """A ``{"kind": ..., "data": ...}`` object whose payload is not yet interpreted."""

    kind: str
    payload: Any


@dataclass(frozen=True, slots=True)
class Listing:
    after: str
    children: tuple[Envelope, ...] = ()


@dataclass(slots=True)
class Subreddit:
    id: str = ""
    display_name: str = ""
    url: str = ""
    title: str = ""
    created_utc: float = 0.0
    created_on: datetime | None = None


@dataclass(slots=True)
class Post:
    id: str = ""
    subreddit_id: str = ""
    author: str = ""
    link_flair_text: str = ""
    link_flair_css_class: str = ""
    author_flair_text: str = ""
    author_flair_css_class: str = ""
    title: str = ""
    url: str = ""
    permalink: str = ""
    created_utc: float = 0.0
    gilded: int = 0
    score: int = 0
    ups: int = 0
    downs: int = 0
    selftext: str = ""
    selftext_html: str = ""
    created_on: datetime | None = None


@dataclass(slots=True)
class Comment:
    """A single comment.

    ``replies`` holds the raw nested listing exactly as the API returned it.
    :func:`flatten_replies` consumes it into ``resolved_replies`` (direct
    children) and ``replies_after`` (tokens for subtrees that were not
    returned inline), then clears it.
    """

    id: str = ""
    link_id: str = ""
    parent_id: str = ""
    author: str = ""
    author_flair_text: str = ""
    author_flair_css_class: str = ""
    permalink: str = ""
    created_utc: float = 0.0
    gilded: int = 0
    score: int = 0
    ups: int = 0
    downs: int = 0
    body: str = ""
    body_html: str = ""
    replies: Any = None
    created_on: datetime | None = None
    resolved_replies: List["Comment"] = field(default_factory=list)
    replies_after: List[str] = field(default_factory=list)
    normalized: bool = False


@dataclass(slots=True)
class MoreReplies:
    children: List[str] = field(default_factory=list)


@dataclass(slots=True)
class Page:
    """One API call worth of typed records plus its continuation tokens."""

    children: list[Any] = field(default_factory=list)
    after: str = ""
    more: list[str] = field(default_factory=list)


def is_valid_identifier(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return IDENTIFIER_PATTERN.fullmatch(value) is not None


def _load_json(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedEnvelope(f"Response body is not UTF-8: {exc}") from exc
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedEnvelope(f"Response body is not valid JSON: {exc}") from exc
    return raw


def _envelope_from_object(obj: Any) -> Envelope:
    if not isinstance(obj, Mapping):
        raise MalformedEnvelope(f"Expected a tagged API object, got {type(obj).__name__}")
    kind = obj.get("kind")
    if not isinstance(kind, str):
        raise MalformedEnvelope("API object is missing a string 'kind'")
    return Envelope(kind=kind, payload=obj.get("data"))


def decode_envelope(raw: Any) -> Envelope:
    """Parse ``raw`` (bytes, text or an already decoded mapping) into an :class:`Envelope`."""
    return _envelope_from_object(_load_json(raw))


def decode_envelopes(raw: Any) -> list[Envelope]:
    """Parse a JSON array of API objects, as returned by the comments endpoint."""
    decoded = _load_json(raw)
    if not isinstance(decoded, list):
        raise MalformedEnvelope(f"Expected an array of API objects, got {type(decoded).__name__}")
    return [_envelope_from_object(item) for item in decoded]


# Field tables: (attribute, JSON key, expected type).
_SUBREDDIT_FIELDS = (
    ("id", "id", str),
    ("display_name", "display_name", str),
    ("url", "url", str),
    ("title", "title", str),
    ("created_utc", "created_utc", float),
)

_POST_FIELDS = (
    ("id", "id", str),
    ("subreddit_id", "subreddit_id", str),
    ("author", "author", str),
    ("link_flair_text", "link_flair_text", str),
    ("link_flair_css_class", "link_flair_css_class", str),
    ("author_flair_text", "author_flair_text", str),
    ("author_flair_css_class", "author_flair_css_class", str),
    ("title", "title", str),
    ("url", "url", str),
    ("permalink", "permalink", str),
    ("created_utc", "created_utc", float),
    ("gilded", "gilded", int),
    ("score", "score", int),
    ("ups", "ups", int),
    ("downs", "downs", int),
    ("selftext", "selftext", str),
    ("selftext_html", "selftext_html", str),
)

_COMMENT_FIELDS = (
    ("id", "id", str),
    ("link_id", "link_id", str),
    ("parent_id", "parent_id", str),
    ("author", "author", str),
    ("author_flair_text", "author_flair_text", str),
    ("author_flair_css_class", "author_flair_css_class", str),
    ("permalink", "permalink", str),
    ("created_utc", "created_utc", float),
    ("gilded", "gilded", int),
    ("score", "score", int),
    ("ups", "ups", int),
    ("downs", "downs", int),
    ("body", "body", str),
    ("body_html", "body_html", str),
)


def _coerce_field(kind: str, key: str, value: Any, expected: type) -> Any:
    # bool is an int subclass in Python but never a number on the wire
    if isinstance(value, bool):
        raise MalformedPayload(f"{kind}.{key}: expected {expected.__name__}, got bool")
    if expected is float and isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, expected):
        return value
    raise MalformedPayload(
        f"{kind}.{key}: expected {expected.__name__}, got {type(value).__name__}"
    )


def _decode_fields(kind: str, payload: Any, fields: Iterable[tuple[str, str, type]]) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        raise MalformedPayload(f"Payload of {kind!r} object is not a JSON object")
    values: dict[str, Any] = {}
    for attr, key, expected in fields:
        value = payload.get(key)
        if value is None:
            continue
        values[attr] = _coerce_field(kind, key, value, expected)
    return values


def created_on(created_utc: float) -> datetime:
    try:
        return datetime.fromtimestamp(math.floor(created_utc), tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise MalformedPayload(f"created_utc out of range: {created_utc!r}") from exc


def _decode_listing(payload: Any) -> Listing:
    if not isinstance(payload, Mapping):
        raise MalformedPayload("Payload of 'Listing' object is not a JSON object")
    after = payload.get("after")
    if after is not None and not isinstance(after, str):
        raise MalformedPayload(f"Listing.after: expected str, got {type(after).__name__}")
    if not is_valid_identifier(after):
        after = ""
    raw_children = payload.get("children")
    if raw_children is None:
        raw_children = []
    if not isinstance(raw_children, list):
        raise MalformedPayload(
            f"Listing.children: expected list, got {type(raw_children).__name__}"
        )
    for child in raw_children:
        if not isinstance(child, Mapping):
            raise MalformedPayload(
                f"Listing.children: expected API object, got {type(child).__name__}"
            )
    children = tuple(_envelope_from_object(child) for child in raw_children)
    return Listing(after=after, children=children)


def _decode_subreddit(payload: Any) -> Subreddit:
    result = Subreddit(**_decode_fields(KIND_SUBREDDIT, payload, _SUBREDDIT_FIELDS))
    result.created_on = created_on(result.created_utc)
    return result


def _decode_post(payload: Any) -> Post:
    result = Post(**_decode_fields(KIND_POST, payload, _POST_FIELDS))
    result.created_on = created_on(result.created_utc)
    return result


def _decode_comment(payload: Any) -> Comment:
    result = Comment(**_decode_fields(KIND_COMMENT, payload, _COMMENT_FIELDS))
    result.replies = payload.get("replies")
    result.created_on = created_on(result.created_utc)
    return result


def _decode_more(payload: Any) -> MoreReplies:
    if not isinstance(payload, Mapping):
        raise MalformedPayload("Payload of 'more' object is not a JSON object")
    children = payload.get("children")
    if children is None:
        return MoreReplies(children=[])
    if not isinstance(children, list):
        raise MalformedPayload(f"more.children: expected list, got {type(children).__name__}")
    for token in children:
        if not isinstance(token, str):
            raise MalformedPayload(f"more.children: expected str, got {type(token).__name__}")
    return MoreReplies(children=list(children))


DECODERS: dict[str, Callable[[Any], Any]] = {
    KIND_LISTING: _decode_listing,
    KIND_COMMENT: _decode_comment,
    KIND_POST: _decode_post,
    KIND_SUBREDDIT: _decode_subreddit,
    KIND_MORE: _decode_more,
}


def extract_as(envelope: Envelope, kind: str) -> Any:
    """Decode ``envelope`` as ``kind`` or raise :class:`TypeMismatch`."""
    if kind not in DECODERS:
        raise ValueError(f"Unknown API object kind: {kind!r}")
    if envelope.kind != kind:
        raise TypeMismatch(kind, envelope.kind)
    return DECODERS[kind](envelope.payload)


def try_extract_as(envelope: Envelope, kind: str) -> Any | None:
    """Like :func:`extract_as` but returns ``None`` when the tag is a different kind."""
    try:
        return extract_as(envelope, kind)
    except TypeMismatch:
        return None


def extract_listing(envelope: Envelope) -> Listing:
    return extract_as(envelope, KIND_LISTING)


def extract_subreddit(envelope: Envelope) -> Subreddit:
    return extract_as(envelope, KIND_SUBREDDIT)


def extract_post(envelope: Envelope) -> Post:
    return extract_as(envelope, KIND_POST)


def extract_comment(envelope: Envelope) -> Comment:
    return extract_as(envelope, KIND_COMMENT)


def extract_more(envelope: Envelope) -> MoreReplies:
    return extract_as(envelope, KIND_MORE)


def _has_no_replies(raw: Any) -> bool:
    if raw is None:
        return True
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")
    if isinstance(raw, str):
        return raw.strip() in ("", '""')
    return False


def _descendants(comment: Comment) -> List[Comment]:
    flattened: List[Comment] = []
    for reply in comment.resolved_replies:
        flattened.append(reply)
        flattened.extend(_descendants(reply))
    return flattened


def flatten_replies(comment: Comment) -> List[Comment]:
    """Flatten the reply tree below ``comment`` into depth-first pre-order.

    Every nested comment is returned exactly once; ``comment`` itself is not
    part of the result. Tokens for subtrees that were not included inline stay
    on the comment they were nested under (``replies_after``).
    """
    if comment.normalized:
        return _descendants(comment)

    comment.resolved_replies = []
    comment.replies_after = []
    flattened: List[Comment] = []

    if _has_no_replies(comment.replies):
        comment.replies = None
        comment.normalized = True
        return flattened

    listing = extract_listing(decode_envelope(comment.replies))
    if listing.after:
        comment.replies_after.append(listing.after)

    for child in listing.children:
        reply = try_extract_as(child, KIND_COMMENT)
        if reply is not None:
            comment.resolved_replies.append(reply)
            flattened.append(reply)
            flattened.extend(flatten_replies(reply))
            continue

        more = try_extract_as(child, KIND_MORE)
        if more is None:
            raise UnexpectedTreeNode(
                f"API object of kind {child.kind!r} is not a Comment or More Replies"
            )
        comment.replies_after.extend(more.children)

    comment.replies = None
    comment.normalized = True
    return flattened


def _select_comment_listing(envelopes: Iterable[Envelope]) -> Listing:
    for envelope in envelopes:
        try:
            listing = extract_listing(envelope)
        except DecodeError:
            continue
        if not listing.children:
            continue
        try:
            extract_comment(listing.children[0])
        except DecodeError:
            continue
        return listing
    raise NoCommentListingFound("No comment listings found")


def assemble_page(raw: Any, kind: str) -> Page:
    """Turn one raw response body into a :class:`Page` of ``kind`` records.

    The comments endpoint (``kind == "t1"``) answers with an array holding the
    post listing and the comment listing; every other endpoint answers with a
    single listing.
    """
    if kind == KIND_COMMENT:
        listing = _select_comment_listing(decode_envelopes(raw))
    else:
        listing = extract_listing(decode_envelope(raw))

    page = Page(after=listing.after)
    for child in listing.children:
        record = try_extract_as(child, kind)
        if record is not None:
            page.children.append(record)
            if kind == KIND_COMMENT:
                page.children.extend(flatten_replies(record))
            continue

        more = try_extract_as(child, KIND_MORE)
        if more is None:
            raise UnexpectedTreeNode(
                f"API object of kind {child.kind!r} is not {kind!r} or More Replies"
            )
        page.more.extend(more.children)

    logger.debug(
        "Assembled page of %d %s record(s), after=%r, %d deferred token(s)",
        len(page.children),
        kind,
        page.after,
        len(page.more),
    )
    return page


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return ""
    return value.isoformat()


def subreddit_record(subreddit: Subreddit) -> dict[str, Any]:
    return {
        "id": subreddit.id,
        "display_name": subreddit.display_name,
        "title": subreddit.title,
        "url": subreddit.url,
        "created_utc": subreddit.created_utc,
        "created_iso": format_timestamp(subreddit.created_on),
    }


def post_record(post: Post) -> dict[str, Any]:
    return {
        "id": post.id,
        "subreddit_id": post.subreddit_id,
        "title": post.title,
        "author": post.author,
        "created_utc": post.created_utc,
        "created_iso": format_timestamp(post.created_on),
        "score": post.score,
        "ups": post.ups,
        "downs": post.downs,
        "gilded": post.gilded,
        "permalink": post.permalink,
        "url": post.url,
        "selftext": post.selftext,
        "link_flair_text": post.link_flair_text,
        "author_flair_text": post.author_flair_text,
    }


def comment_record(comment: Comment) -> dict[str, Any]:
    return {
        "id": comment.id,
        "link_id": comment.link_id,
        "parent_id": comment.parent_id,
        "author": comment.author,
        "created_utc": comment.created_utc,
        "created_iso": format_timestamp(comment.created_on),
        "score": comment.score,
        "ups": comment.ups,
        "downs": comment.downs,
        "gilded": comment.gilded,
        "body": comment.body,
        "permalink": comment.permalink,
        "author_flair_text": comment.author_flair_text,
        "reply_ids": " ".join(reply.id for reply in comment.resolved_replies),
        "replies_after": " ".join(comment.replies_after),
    }


SUBREDDIT_CSV_FIELDS = list(subreddit_record(Subreddit()).keys())
POST_CSV_FIELDS = list(post_record(Post()).keys())
COMMENT_CSV_FIELDS = list(comment_record(Comment()).keys())


__all__ = [
    "COMMENT_CSV_FIELDS",
    "Comment",
    "DecodeError",
    "Envelope",
    "KIND_COMMENT",
    "KIND_LISTING",
    "KIND_MORE",
    "KIND_POST",
    "KIND_SUBREDDIT",
    "Listing",
    "MalformedEnvelope",
    "MalformedPayload",
    "MoreReplies",
    "NoCommentListingFound",
    "POST_CSV_FIELDS",
    "Page",
    "Post",
    "RScrapeError",
    "SUBREDDIT_CSV_FIELDS",
    "Subreddit",
    "TypeMismatch",
    "UnexpectedTreeNode",
    "assemble_page",
    "comment_record",
    "created_on",
    "decode_envelope",
    "decode_envelopes",
    "extract_as",
    "extract_comment",
    "extract_listing",
    "extract_more",
    "extract_post",
    "extract_subreddit",
    "flatten_replies",
    "format_timestamp",
    "is_valid_identifier",
    "post_record",
    "subreddit_record",
    "try_extract_as",
]
