"""Fuzzy relevance ranking for client-side search."""

from collections.abc import Iterable
from typing import Protocol

# Bonus added to every contiguous substring match so that it always
# outranks a scattered subsequence match.
SUBSTRING_BONUS = 1000


class Rankable(Protocol):
    title: str
    viewer_count: int


def score(query: str, text: str) -> int:
    """
    Score how well ``query`` matches ``text``, case-insensitively.

    Scoring:
    - A blank query matches everything with the lowest positive score (1).
    - A contiguous substring scores SUBSTRING_BONUS plus the length of the
      text from the match position onwards, so earlier matches score higher.
    - Otherwise the query must appear as a subsequence. Every matched
      character adds the current streak of consecutive matches plus its
      distance from the end of the text.

    Args:
        query: Free-text search input.
        text: Text to match against (e.g. a stream title).

    Returns:
        Relevance score, 0 meaning no match.
    """
    if not query.strip():
        return 1

    lq = query.lower()
    lt = text.lower()

    index = lt.find(lq)
    if index >= 0:
        return SUBSTRING_BONUS + (len(lt) - index)

    total = 0
    query_index = 0
    streak = 0
    for i, char in enumerate(lt):
        if query_index < len(lq) and char == lq[query_index]:
            query_index += 1
            streak += 1
            total += streak + (len(lt) - i)
        else:
            streak = 0

    return total if query_index == len(lq) else 0


def rank_streams[T: Rankable](streams: Iterable[T], query: str) -> list[T]:
    """
    Filter and order streams against a search query.

    With a blank query every stream is kept, most watched first. Otherwise
    only matching streams are kept, best match first.

    Args:
        streams: Streams to rank.
        query: Free-text search input.

    Returns:
        New list of ranked streams.
    """
    if not query.strip():
        return sorted(streams, key=lambda s: s.viewer_count, reverse=True)

    scored = [(stream, score(query, stream.title)) for stream in streams]
    matches = [(stream, value) for stream, value in scored if value > 0]
    matches.sort(key=lambda x: x[1], reverse=True)
    return [stream for stream, _ in matches]
