"""Journal data access: the mutation facade and read-only views."""

from .autotag import extract_location, generate_auto_tags, merge_tags
from .service import JournalService, MutationResult, MutationStatus
from .sharing import AccessCheck, ShareLink, ShareLinks
from .views import (
    ViewFilter,
    all_tags,
    filter_memories,
    filter_projects,
    gallery_images,
    timeline,
)

__all__ = [
    "AccessCheck",
    "JournalService",
    "MutationResult",
    "MutationStatus",
    "ShareLink",
    "ShareLinks",
    "ViewFilter",
    "all_tags",
    "extract_location",
    "filter_memories",
    "filter_projects",
    "gallery_images",
    "generate_auto_tags",
    "merge_tags",
    "timeline",
]
