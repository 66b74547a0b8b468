"""Export memories to CSV and photo-book JSON, and dump full backups."""

import csv
import io
import json
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Iterable

from .models import Memory, Project

if TYPE_CHECKING:
    from .local.offline_cache import OfflineCache

CSV_HEADERS = ["Title", "Description", "Date", "Tags", "Image Count", "Is Favorite"]


def export_to_csv(memories: Iterable[Memory]) -> str:
    """Render memories as CSV, one row per memory."""
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for memory in memories:
        writer.writerow([
            memory.title,
            memory.description,
            memory.date,
            ", ".join(memory.tags),
            len(memory.image_urls),
            "Yes" if memory.is_favorite else "No",
        ])
    return out.getvalue()


def _date_range(memories: list[Memory]) -> dict[str, str]:
    dated = []
    for memory in memories:
        try:
            dated.append((date.fromisoformat(memory.date[:10]), memory.date))
        except ValueError:
            continue
    if not dated:
        return {"earliest": "", "latest": ""}
    return {"earliest": min(dated)[1], "latest": max(dated)[1]}


def export_photo_book(
    project: Project, memories: Iterable[Memory], now: datetime | None = None
) -> dict[str, Any]:
    """Build an importable photo-book document for a project.

    Args:
        project: Project the book is titled after.
        memories: Memories to include, in the order they should appear.
        now: Export timestamp; defaults to the current time.
    """
    memories = list(memories)
    exported_at = (now or datetime.now()).isoformat()
    return {
        "title": project.name,
        "description": project.description,
        "createdAt": exported_at,
        "memories": [{**m.to_dict(), "exported_at": exported_at} for m in memories],
        "metadata": {
            "totalMemories": len(memories),
            "totalImages": sum(len(m.image_urls) for m in memories),
            "dateRange": _date_range(memories),
        },
    }


def create_backup(cache: "OfflineCache") -> str:
    """Serialize everything in the offline cache as pretty-printed JSON."""
    data = cache.export_data()
    data["exported_at"] = datetime.now().isoformat()
    return json.dumps(data, indent=2)
