"""Derived, read-only projections of projects and memories for display.

Every function here is pure: it returns new lists and never mutates the
collections it is given.
"""

from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from ..models import GalleryImage, Memory, Project


@dataclass(frozen=True)
class ViewFilter:
    """User-entered filter state."""

    search: str = ""
    tags: tuple[str, ...] = ()
    favorites_only: bool = False
    project_id: str | None = None


def _memory_date(memory: Memory) -> date:
    try:
        return date.fromisoformat(memory.date[:10])
    except (TypeError, ValueError):
        return date.min


def _naive(value: datetime) -> datetime:
    return value.replace(tzinfo=None)


def _project_matches(project: Project, query: str) -> bool:
    return query in project.name.lower() or query in project.description.lower()


def _memory_matches(memory: Memory, query: str) -> bool:
    return (
        query in memory.title.lower()
        or query in memory.description.lower()
        or any(query in tag.lower() for tag in memory.tags)
        or (memory.location is not None and query in memory.location.lower())
    )


def filter_projects(
    projects: Iterable[Project], view: ViewFilter = ViewFilter()
) -> list[Project]:
    """Projects matching the search, newest first."""
    query = view.search.strip().lower()
    result = [
        p for p in projects
        if (not query or _project_matches(p, query))
        and (not view.favorites_only or p.is_favorite)
    ]
    return sorted(result, key=lambda p: _naive(p.created_at), reverse=True)


def filter_memories(
    memories: Iterable[Memory], view: ViewFilter = ViewFilter()
) -> list[Memory]:
    """Memories matching every active filter, most recent date first."""
    query = view.search.strip().lower()
    wanted_tags = {t.lower() for t in view.tags}

    result = []
    for memory in memories:
        if query and not _memory_matches(memory, query):
            continue
        if view.favorites_only and not memory.is_favorite:
            continue
        if view.project_id is not None and memory.project_id != view.project_id:
            continue
        if wanted_tags and not wanted_tags <= {t.lower() for t in memory.tags}:
            continue
        result.append(memory)

    return sorted(result, key=_memory_date, reverse=True)


def gallery_images(
    memories: Iterable[Memory], view: ViewFilter = ViewFilter()
) -> list[GalleryImage]:
    """Flatten the filtered memories' images into gallery entries."""
    return [
        GalleryImage(
            id=f"{memory.id}-{index}",
            url=url,
            title=memory.title,
            memory_id=memory.id,
            is_favorite=memory.is_favorite,
        )
        for memory in filter_memories(memories, view)
        for index, url in enumerate(memory.image_urls)
    ]


def timeline(
    memories: Iterable[Memory], view: ViewFilter = ViewFilter()
) -> list[tuple[str, list[Memory]]]:
    """Group filtered memories by month ("YYYY-MM"), newest month first."""
    groups: dict[str, list[Memory]] = {}
    for memory in filter_memories(memories, view):
        key = memory.date[:7] if _memory_date(memory) != date.min else "undated"
        groups.setdefault(key, []).append(memory)
    return list(groups.items())


def all_tags(memories: Iterable[Memory]) -> list[tuple[str, int]]:
    """Every tag in use with its count, most used first."""
    counts = Counter(tag for memory in memories for tag in memory.tags)
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))
