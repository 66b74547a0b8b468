"""Share links for memories, with expiry, optional password and view counts."""

import hashlib
import hmac
import json
import logging
import secrets
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from ..errors import EntityNotFoundError, ValidationError
from ..local.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

SHARE_KEY = "timestitch-share-links"
HASH_ITERATIONS = 100_000

# Options update() accepts besides "password"
_OPTION_FIELDS = ("is_public", "expires_at", "allow_download", "allow_comments")


def hash_password(password: str, salt: str | None = None) -> str:
    """Hash a link password as "salt$digest" (PBKDF2-SHA256)."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt), HASH_ITERATIONS
    )
    return f"{salt}${digest.hex()}"


def check_password(password: str, hashed: str) -> bool:
    salt, _, _ = hashed.partition("$")
    return hmac.compare_digest(hash_password(password, salt), hashed)


@dataclass
class ShareLink:
    """A link granting access to one memory."""

    id: str
    memory_id: str
    url: str
    is_public: bool = True
    expires_at: datetime | None = None
    password_hash: str | None = None
    allow_download: bool = False
    allow_comments: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    views: int = 0

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and self.expires_at < (now or datetime.now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "memory_id": self.memory_id,
            "url": self.url,
            "is_public": self.is_public,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "password_hash": self.password_hash,
            "allow_download": self.allow_download,
            "allow_comments": self.allow_comments,
            "created_at": self.created_at.isoformat(),
            "views": self.views,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShareLink":
        expires_at = data.get("expires_at")
        return cls(
            id=data["id"],
            memory_id=data["memory_id"],
            url=data["url"],
            is_public=data.get("is_public", True),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            password_hash=data.get("password_hash"),
            allow_download=data.get("allow_download", False),
            allow_comments=data.get("allow_comments", False),
            created_at=datetime.fromisoformat(data["created_at"]),
            views=int(data.get("views", 0)),
        )


@dataclass
class AccessCheck:
    """Outcome of validating a visit to a share link."""

    valid: bool
    reason: str | None = None
    link: ShareLink | None = None


class ShareLinks:
    """Share links keyed by id, optionally persisted in the local store.

    Links are local to this device; they are not part of the pending
    change log and are never sent to the remote.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        base_url: str = "http://localhost:8080",
        key: str = SHARE_KEY,
    ):
        """Initialize the registry.

        Args:
            store: Key/value store to persist links in; None keeps them in memory.
            base_url: Origin the share URLs are built on.
            key: Store key holding the links.
        """
        self._store = store
        self.base_url = base_url.rstrip("/")
        self.key = key
        self._links: dict[str, ShareLink] = {}

    def load(self) -> None:
        """Load persisted links; unreadable content counts as no links."""
        if self._store is None:
            return
        raw = self._store.get(self.key)
        if not raw:
            self._links = {}
            return
        try:
            links = [ShareLink.from_dict(d) for d in json.loads(raw.decode("utf-8"))]
        except (UnicodeDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Share links under '{self.key}' are unreadable, ignoring: {e}")
            links = []
        self._links = {link.id: link for link in links}
        logger.debug(f"Loaded {len(self._links)} share links")

    def _persist(self) -> None:
        if self._store is None:
            return
        data = [link.to_dict() for link in self._links.values()]
        self._store.set(self.key, json.dumps(data).encode("utf-8"))

    @property
    def links(self) -> list[ShareLink]:
        return list(self._links.values())

    def get(self, link_id: str) -> ShareLink:
        try:
            return self._links[link_id]
        except KeyError:
            raise EntityNotFoundError(f"Share link {link_id} not found") from None

    def for_memory(self, memory_id: str) -> list[ShareLink]:
        return [link for link in self._links.values() if link.memory_id == memory_id]

    def create(
        self,
        memory_id: str,
        is_public: bool = True,
        expires_at: datetime | None = None,
        password: str | None = None,
        allow_download: bool = False,
        allow_comments: bool = False,
        now: datetime | None = None,
    ) -> ShareLink:
        """Create a share link for a memory.

        Raises:
            ValidationError: The memory id is empty or the expiry has passed.
            PersistenceError: The link could not be stored.
        """
        now = now or datetime.now()
        if not memory_id:
            raise ValidationError("A memory id is required")
        if expires_at is not None and expires_at <= now:
            raise ValidationError("Expiry must be in the future")

        link_id = f"share_{secrets.token_urlsafe(12)}"
        link = ShareLink(
            id=link_id,
            memory_id=memory_id,
            url=f"{self.base_url}/shared/{link_id}",
            is_public=is_public,
            expires_at=expires_at,
            password_hash=hash_password(password) if password else None,
            allow_download=allow_download,
            allow_comments=allow_comments,
            created_at=now,
        )
        self._links[link_id] = link
        self._persist()
        logger.info(f"Share link {link_id} created for memory {memory_id}")
        return link

    def update(self, link_id: str, changes: dict[str, Any]) -> ShareLink:
        """Change a link's options. A "password" of None or "" removes it."""
        link = self.get(link_id)
        unknown = set(changes) - set(_OPTION_FIELDS) - {"password"}
        if unknown:
            raise ValidationError(f"Cannot change {', '.join(sorted(unknown))}")

        updated = replace(link, **{k: v for k, v in changes.items() if k in _OPTION_FIELDS})
        if "password" in changes:
            password = changes["password"]
            updated.password_hash = hash_password(password) if password else None

        self._links[link_id] = updated
        self._persist()
        return updated

    def delete(self, link_id: str) -> bool:
        """Remove a link. Returns False if it did not exist."""
        if self._links.pop(link_id, None) is None:
            return False
        self._persist()
        logger.info(f"Share link {link_id} deleted")
        return True

    def delete_for_memory(self, memory_id: str) -> int:
        """Remove every link to a memory; returns how many were removed."""
        doomed = [link.id for link in self.for_memory(memory_id)]
        for link_id in doomed:
            del self._links[link_id]
        if doomed:
            self._persist()
        return len(doomed)

    def record_view(self, link_id: str) -> int:
        """Count one visit and return the new total."""
        link = self.get(link_id)
        link.views += 1
        self._persist()
        return link.views

    def validate_access(
        self, link_id: str, password: str | None = None, now: datetime | None = None
    ) -> AccessCheck:
        """Check whether a visitor may open a link."""
        link = self._links.get(link_id)
        if link is None:
            return AccessCheck(False, "Link not found")
        if link.is_expired(now):
            return AccessCheck(False, "Link has expired")
        if link.password_hash and not (password and check_password(password, link.password_hash)):
            return AccessCheck(False, "Invalid password")
        return AccessCheck(True, link=link)
