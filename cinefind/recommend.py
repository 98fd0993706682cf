from typing import Iterable, Optional

from .models import ContentItem

MAX_SUGGESTIONS = 10
SHORT_BASE_TITLE = 3


def _title_of(item: ContentItem) -> str:
    title = getattr(item, "title", None)
    return title if isinstance(title, str) else ""


def base_title(title: Optional[str]) -> str:
    """Series key of a title, lowercased.

    The leading run of letters and spaces, e.g. "Breaking" for
    "Breaking Bad S1E1". Runs of three characters or fewer would match too
    much, so the whole title is used for those instead.
    """
    if not isinstance(title, str):
        return ""
    end = 0
    while end < len(title) and (title[end].isalpha() or title[end].isspace()):
        end += 1
    run = title[:end].strip()
    if len(run) <= SHORT_BASE_TITLE:
        return title.lower()
    return run.lower()


def rank_suggestions(
    current: Optional[ContentItem],
    catalog: Iterable[ContentItem],
    limit: int = MAX_SUGGESTIONS,
) -> list[ContentItem]:
    """Order catalog items to suggest next to the item being watched.

    Items from the same series come first in catalog order, followed by
    everything else by descending votes. Pure: no I/O, never raises for
    odd titles or scores.
    """
    if not current:
        return []
    current_id = getattr(current, "id", None)
    candidates = [
        item
        for item in catalog or ()
        if item is not None and getattr(item, "id", None) != current_id
    ]
    if not candidates:
        return []

    base = base_title(_title_of(current))
    same_series = []
    others = []
    for item in candidates:
        if base and _title_of(item).lower().startswith(base):
            same_series.append(item)
        else:
            others.append(item)
    others.sort(key=_votes_of, reverse=True)

    ranked = []
    seen = set()
    for item in same_series + others:
        item_id = getattr(item, "id", None)
        if item_id in seen:
            continue
        seen.add(item_id)
        ranked.append(item)
        if len(ranked) >= limit:
            break
    return ranked


def _votes_of(item: ContentItem) -> int:
    votes = getattr(item, "votes", 0)
    return votes if isinstance(votes, int) else 0
