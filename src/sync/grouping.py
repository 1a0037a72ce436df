"""Derived views over a list of bookmarks: collection groups and dashboard stats."""
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from models.base import as_utc
from schemas.bookmark import BookmarkResponse

UNORGANIZED = "Unorganized"
RECENT_WINDOW = timedelta(days=7)


@dataclass(frozen=True)
class BookmarkGroup:
    """Bookmarks sharing one collection label."""

    name: str
    bookmarks: tuple[BookmarkResponse, ...]

    @property
    def count(self) -> int:
        return len(self.bookmarks)


@dataclass(frozen=True)
class Stats:
    """Dashboard counters."""

    total: int
    recent: int
    favorites: int


def group_by_collection(bookmarks: Iterable[BookmarkResponse]) -> list[BookmarkGroup]:
    """
    Group bookmarks by collection label.

    Bookmarks without a collection land in the "Unorganized" group, together
    with any bookmarks explicitly labelled "Unorganized". Named groups are
    sorted case-insensitively and "Unorganized" always comes last.
    Bookmarks keep their input order within a group.
    """
    groups: dict[str, list[BookmarkResponse]] = {}
    for bookmark in bookmarks:
        groups.setdefault(bookmark.collection or UNORGANIZED, []).append(bookmark)

    named = sorted((k for k in groups if k != UNORGANIZED), key=lambda name: (name.casefold(), name))
    result = [BookmarkGroup(name=name, bookmarks=tuple(groups[name])) for name in named]
    if UNORGANIZED in groups:
        result.append(BookmarkGroup(name=UNORGANIZED, bookmarks=tuple(groups[UNORGANIZED])))
    return result


def compute_stats(bookmarks: Sequence[BookmarkResponse], now: datetime) -> Stats:
    """Total, created within the last seven days of ``now``, and favorite counts."""
    cutoff = as_utc(now) - RECENT_WINDOW
    return Stats(
        total=len(bookmarks),
        recent=sum(1 for b in bookmarks if as_utc(b.created_at) >= cutoff),
        favorites=sum(1 for b in bookmarks if b.is_favorite),
    )
