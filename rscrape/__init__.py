"""Public package surface for rscrape."""
from .client import (
    BASE_URL,
    DEFAULT_USER_AGENT,
    ClientOptions,
    FetchError,
    build_session,
    collect_posts,
    fetch_bytes,
    get_comments,
    get_posts,
    get_subreddit,
)
from .core import (
    Comment,
    DecodeError,
    Envelope,
    Listing,
    MalformedEnvelope,
    MalformedPayload,
    MoreReplies,
    NoCommentListingFound,
    Page,
    Post,
    RScrapeError,
    Subreddit,
    TypeMismatch,
    UnexpectedTreeNode,
    assemble_page,
    decode_envelope,
    extract_as,
    extract_listing,
    flatten_replies,
    is_valid_identifier,
)

__version__ = "0.1.0"

__all__ = [
    "BASE_URL",
    "DEFAULT_USER_AGENT",
    "ClientOptions",
    "Comment",
    "DecodeError",
    "Envelope",
    "FetchError",
    "Listing",
    "MalformedEnvelope",
    "MalformedPayload",
    "MoreReplies",
    "NoCommentListingFound",
    "Page",
    "Post",
    "RScrapeError",
    "Subreddit",
    "TypeMismatch",
    "UnexpectedTreeNode",
    "assemble_page",
    "build_session",
    "collect_posts",
    "decode_envelope",
    "extract_as",
    "extract_listing",
    "fetch_bytes",
    "flatten_replies",
    "get_comments",
    "get_posts",
    "get_subreddit",
    "is_valid_identifier",
    "__version__",
]
