from __future__ import annotations

from rscrape import build_session, get_comments, get_posts


def main() -> None:
    """Demonstrate the Python API by reading one page of posts and the comments of the first one."""
    session = build_session("rscrape-example/0.1", verify=True)

    posts, after = get_posts(session, "python", "top", top_window="week")
    print(f"Fetched {len(posts)} post(s); next page token: {after or '<none>'}")
    if not posts:
        return

    first = posts[0]
    comments, more = get_comments(session, "python", first.id)
    print(f"{first.title!r} has {len(comments)} inline comment(s) and {len(more)} deferred subtree(s)")
    for comment in comments[:5]:
        print(f"- {comment.author}: {comment.body[:60]!r} ({len(comment.replies_after)} deferred)")


if __name__ == "__main__":
    main()
