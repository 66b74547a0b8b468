"""Keyword-based tag suggestions for memories."""

import re
from datetime import date

MAX_AUTO_TAGS = 5

# Keyword -> tags it implies
TAG_MAPPINGS: dict[str, tuple[str, ...]] = {
    # Events
    "birthday": ("birthday", "celebration", "party"),
    "wedding": ("wedding", "celebration", "love"),
    "graduation": ("graduation", "achievement", "education"),
    "anniversary": ("anniversary", "celebration", "milestone"),
    "holiday": ("holiday", "vacation", "travel"),
    "christmas": ("christmas", "holiday", "family"),
    "vacation": ("vacation", "travel", "leisure"),
    # Activities
    "travel": ("travel", "adventure", "journey"),
    "trip": ("travel", "trip", "adventure"),
    "hiking": ("hiking", "nature", "outdoor"),
    "beach": ("beach", "summer", "vacation"),
    "mountain": ("mountain", "nature", "adventure"),
    "cooking": ("cooking", "food", "kitchen"),
    "sport": ("sports", "fitness", "activity"),
    "workout": ("fitness", "health", "exercise"),
    "concert": ("music", "concert", "entertainment"),
    "movie": ("movie", "entertainment", "cinema"),
    # People
    "family": ("family", "together", "love"),
    "friend": ("friends", "social", "together"),
    "baby": ("baby", "family", "milestone"),
    "pet": ("pet", "animal", "companion"),
    # Locations
    "home": ("home", "house", "family"),
    "office": ("work", "office", "professional"),
    "school": ("school", "education", "learning"),
    "restaurant": ("food", "dining", "restaurant"),
    "park": ("park", "nature", "outdoor"),
    # Seasons
    "spring": ("spring", "season", "nature"),
    "summer": ("summer", "season", "warm"),
    "autumn": ("autumn", "fall", "season"),
    "winter": ("winter", "season", "cold"),
    # Moods
    "happy": ("happy", "joy", "positive"),
    "sad": ("sad", "emotional", "memory"),
    "excited": ("excited", "energy", "positive"),
    "peaceful": ("peaceful", "calm", "relaxing"),
    "beautiful": ("beautiful", "aesthetic", "memorable"),
    # Work
    "project": ("project", "work", "achievement"),
    "meeting": ("meeting", "work", "professional"),
    "presentation": ("presentation", "work", "achievement"),
    "launch": ("launch", "achievement", "milestone"),
}

MONTHS = (
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
)
MONTH_SEASONS = (
    "winter", "winter", "spring", "spring", "spring", "summer",
    "summer", "summer", "autumn", "autumn", "autumn", "winter",
)

LOCATION_PATTERNS = (
    re.compile(r"\b(?:in|at|from|to)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)"),
    re.compile(r"([A-Z][a-z]+,\s*[A-Z][a-z]+)"),
)


def generate_auto_tags(
    title: str, description: str, today: date | None = None
) -> list[str]:
    """Suggest tags from keywords in a memory's title and description.

    Matching is a plain substring test on the lowercased text, so
    "hiking" also fires on "hikings". Month names add their season and
    the current year adds "recent". At most five tags are returned, in
    the order they were found.
    """
    content = f"{title} {description}".lower()
    tags: list[str] = []

    for keyword, associated in TAG_MAPPINGS.items():
        if keyword in content:
            for tag in associated:
                if tag not in tags:
                    tags.append(tag)

    today = today or date.today()
    if str(today.year) in content:
        tags.append("recent")

    for month, season in zip(MONTHS, MONTH_SEASONS):
        if month in content and season not in tags:
            tags.append(season)

    return tags[:MAX_AUTO_TAGS]


def merge_tags(*groups: list[str]) -> list[str]:
    """Concatenate tag lists, dropping duplicates but keeping first order."""
    merged: list[str] = []
    for group in groups:
        for tag in group:
            if tag not in merged:
                merged.append(tag)
    return merged


def extract_location(text: str) -> str | None:
    """Pull a capitalised place name out of free text, if any."""
    for pattern in LOCATION_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return None
