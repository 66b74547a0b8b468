"""Domain models for projects and memories, plus their validation rules."""

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from typing import Any, Iterable

from .errors import ValidationError

PROJECT_NAME_MAX_LENGTH = 100
MEMORY_TITLE_MAX_LENGTH = 200

PROJECT_COLORS = ("blush", "sky", "lime", "amber", "rose", "indigo")


def new_id() -> str:
    """Generate a client-side entity id.

    UUIDs are accepted by the remote tables as primary keys, so an id
    assigned while offline stays valid once the create is replayed.
    """
    return str(uuid.uuid4())


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return datetime.now()
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass
class Project:
    """A user-defined collection of memories."""

    id: str
    name: str
    description: str
    color: str
    tags: list[str] = field(default_factory=list)
    is_favorite: bool = False
    is_public: bool = False
    collaborators: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    memory_count: int = 0  # derived, never sent to the remote

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for local serialization."""
        data = self.to_row()
        data["memory_count"] = self.memory_count
        return data

    def to_row(self) -> dict[str, Any]:
        """Convert to a remote table row."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "tags": list(self.tags),
            "is_favorite": self.is_favorite,
            "is_public": self.is_public,
            "collaborators": list(self.collaborators),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        """Create from a local dictionary or a remote row."""
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            description=data.get("description", ""),
            color=data.get("color", ""),
            tags=list(data.get("tags") or []),
            is_favorite=bool(data.get("is_favorite", False)),
            is_public=bool(data.get("is_public", False)),
            collaborators=list(data.get("collaborators") or []),
            created_at=_parse_datetime(data.get("created_at")),
            memory_count=int(data.get("memory_count", 0)),
        )

    from_row = from_dict

    def apply_patch(self, patch: dict[str, Any]) -> "Project":
        return replace(self, **_checked_patch(self, patch, PROJECT_MUTABLE_FIELDS))


@dataclass
class Memory:
    """A single journal entry."""

    id: str
    title: str
    description: str
    date: str = field(default_factory=lambda: date.today().isoformat())
    image_urls: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    is_favorite: bool = False
    project_id: str | None = None
    location: str | None = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "date": self.date,
            "image_urls": list(self.image_urls),
            "tags": list(self.tags),
            "is_favorite": self.is_favorite,
            "project_id": self.project_id,
            "location": self.location,
            "created_at": self.created_at.isoformat(),
        }

    to_row = to_dict

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Memory":
        """Create from a local dictionary or a remote row."""
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            description=data.get("description", ""),
            date=str(data.get("date") or date.today().isoformat()),
            image_urls=list(data.get("image_urls") or []),
            tags=list(data.get("tags") or []),
            is_favorite=bool(data.get("is_favorite", False)),
            project_id=data.get("project_id"),
            location=data.get("location"),
            created_at=_parse_datetime(data.get("created_at")),
        )

    from_row = from_dict

    def apply_patch(self, patch: dict[str, Any]) -> "Memory":
        return replace(self, **_checked_patch(self, patch, MEMORY_MUTABLE_FIELDS))


PROJECT_MUTABLE_FIELDS = frozenset(
    f.name for f in fields(Project) if f.name not in ("id", "created_at", "memory_count")
)
MEMORY_MUTABLE_FIELDS = frozenset(
    f.name for f in fields(Memory) if f.name not in ("id", "created_at")
)


def _checked_patch(
    entity: Any, patch: dict[str, Any], allowed: frozenset[str]
) -> dict[str, Any]:
    unknown = sorted(set(patch) - allowed)
    if unknown:
        kind = type(entity).__name__
        raise ValidationError(
            [f"{kind} field '{name}' cannot be updated" for name in unknown]
        )
    return dict(patch)


@dataclass
class GalleryImage:
    """One image of a memory as shown in the gallery view."""

    id: str
    url: str
    title: str
    memory_id: str
    is_favorite: bool


def validate_project(
    project: Project, existing: Iterable[Project] = ()
) -> list[str]:
    """Return the list of validation errors for a project (empty if valid).

    Args:
        project: Project to check.
        existing: Other loaded projects, used for the unique-name rule.
    """
    errors = []
    if not project.name or not project.name.strip():
        errors.append("Project name is required")
    if not project.description or not project.description.strip():
        errors.append("Project description is required")
    if not project.color:
        errors.append("Project color is required")
    if project.name and len(project.name) > PROJECT_NAME_MAX_LENGTH:
        errors.append(
            f"Project name must be less than {PROJECT_NAME_MAX_LENGTH} characters"
        )
    if project.name and project.name.strip():
        name = project.name.strip().lower()
        for other in existing:
            if other.id != project.id and other.name.strip().lower() == name:
                errors.append("A project with this name already exists")
                break
    return errors


def validate_memory(memory: Memory) -> list[str]:
    """Return the list of validation errors for a memory (empty if valid)."""
    errors = []
    if not memory.title or not memory.title.strip():
        errors.append("Memory title is required")
    if not memory.description or not memory.description.strip():
        errors.append("Memory description is required")
    if memory.title and len(memory.title) > MEMORY_TITLE_MAX_LENGTH:
        errors.append(
            f"Memory title must be less than {MEMORY_TITLE_MAX_LENGTH} characters"
        )
    if not memory.date:
        errors.append("Memory date is required")
    else:
        try:
            date.fromisoformat(memory.date)
        except ValueError:
            errors.append("Memory date must be in YYYY-MM-DD format")
    if not memory.image_urls:
        errors.append("At least one image is required")
    return errors
