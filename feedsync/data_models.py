"""
Data models for feedsync.
These models define the client-side projections of the documents held by
the remote store. They are caches of remote state, never the source of truth.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .store import Document


def _ts(value: Any) -> Optional[datetime]:
    """Coerce a stored timestamp (datetime, ISO string or epoch) to aware UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class FriendshipStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class NotificationType(str, Enum):
    FRIEND_REQUEST = "friend_request"
    FRIEND_ACCEPTED = "friend_accepted"
    FRIEND_REJECTED = "friend_rejected"
    MESSAGE = "message"
    LIKE = "like"
    COMMENT = "comment"


class ThemePreference(str, Enum):
    LIGHT = "light"
    DARK = "dark"


class UsernameStatus(str, Enum):
    IDLE = "idle"
    INVALID = "invalid"
    CHECKING = "checking"
    AVAILABLE = "available"
    TAKEN = "taken"


@dataclass
class Account:
    """Identity owned by the auth provider."""
    id: str
    email: str
    display_name: str = ""
    created_at: Optional[datetime] = None


@dataclass
class Author:
    """The slice of a Profile joined onto feed items."""
    id: str
    name: str
    username: str
    avatar: Optional[str] = None


UNKNOWN_AUTHOR_NAME = "Unknown"
UNKNOWN_AUTHOR_USERNAME = "unknown"


def unknown_author(user_id: str) -> Author:
    return Author(id=user_id, name=UNKNOWN_AUTHOR_NAME, username=UNKNOWN_AUTHOR_USERNAME, avatar=None)


@dataclass
class Profile:
    id: str
    name: str
    username: str
    email: str = ""
    avatar: Optional[str] = None
    theme_preference: ThemePreference = ThemePreference.LIGHT
    color_theme: str = "green"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Document) -> "Profile":
        d = doc.data
        try:
            theme = ThemePreference(d.get("theme_preference") or ThemePreference.LIGHT.value)
        except ValueError:
            theme = ThemePreference.LIGHT
        return cls(
            id=doc.id,
            name=d.get("name") or "",
            username=d.get("username") or "",
            email=d.get("email") or "",
            avatar=d.get("avatar"),
            theme_preference=theme,
            color_theme=d.get("color_theme") or "green",
            created_at=_ts(d.get("created_at")),
            updated_at=_ts(d.get("updated_at")),
        )

    def as_author(self) -> Author:
        return Author(id=self.id, name=self.name or UNKNOWN_AUTHOR_NAME,
                      username=self.username or UNKNOWN_AUTHOR_USERNAME, avatar=self.avatar)


@dataclass
class Post:
    id: str
    user_id: str
    content: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    image_url: Optional[str] = None
    like_count: int = 0  # denormalized, display only
    comment_count: int = 0  # denormalized, display only

    @classmethod
    def from_document(cls, doc: Document) -> "Post":
        d = doc.data
        return cls(
            id=doc.id,
            user_id=d.get("user_id") or "",
            content=d.get("content") or "",
            created_at=_ts(d.get("created_at")),
            updated_at=_ts(d.get("updated_at")),
            image_url=d.get("image_url"),
            like_count=int(d.get("like_count") or 0),
            comment_count=int(d.get("comment_count") or 0),
        )


@dataclass
class Comment:
    id: str
    post_id: str
    user_id: str
    content: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Document) -> "Comment":
        d = doc.data
        return cls(
            id=doc.id,
            post_id=d.get("post_id") or "",
            user_id=d.get("user_id") or "",
            content=d.get("content") or "",
            created_at=_ts(d.get("created_at")),
        )


@dataclass
class Like:
    id: str
    post_id: str
    user_id: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Document) -> "Like":
        d = doc.data
        return cls(id=doc.id, post_id=d.get("post_id") or "", user_id=d.get("user_id") or "",
                   created_at=_ts(d.get("created_at")))


@dataclass
class Friendship:
    id: str
    sender_id: str
    receiver_id: str
    status: FriendshipStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Document) -> "Friendship":
        d = doc.data
        return cls(
            id=doc.id,
            sender_id=d.get("sender_id") or "",
            receiver_id=d.get("receiver_id") or "",
            status=FriendshipStatus(d.get("status") or FriendshipStatus.PENDING.value),
            created_at=_ts(d.get("created_at")),
            updated_at=_ts(d.get("updated_at")),
        )

    def other(self, user_id: str) -> str:
        return self.receiver_id if self.sender_id == user_id else self.sender_id

    def involves(self, user_id: str) -> bool:
        return user_id in (self.sender_id, self.receiver_id)


@dataclass
class Message:
    id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: Optional[datetime] = None
    read: bool = False
    conversation_id: str = ""

    @classmethod
    def from_document(cls, doc: Document) -> "Message":
        d = doc.data
        return cls(
            id=doc.id,
            sender_id=d.get("sender_id") or "",
            receiver_id=d.get("receiver_id") or "",
            content=d.get("content") or "",
            created_at=_ts(d.get("created_at")),
            read=bool(d.get("read") or False),
            conversation_id=d.get("conversation_id") or "",
        )


@dataclass
class Notification:
    id: str
    user_id: str
    type: NotificationType
    content: str
    created_at: Optional[datetime] = None
    read: bool = False
    reference_id: Optional[str] = None
    deleted_at: Optional[datetime] = None  # tombstone

    @classmethod
    def from_document(cls, doc: Document) -> "Notification":
        d = doc.data
        return cls(
            id=doc.id,
            user_id=d.get("user_id") or "",
            type=NotificationType(d.get("type")),
            content=d.get("content") or "",
            created_at=_ts(d.get("created_at")),
            read=bool(d.get("read") or False),
            reference_id=d.get("reference_id"),
            deleted_at=_ts(d.get("deleted_at")),
        )


@dataclass
class StoryImage:
    url: str
    caption: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Story:
    id: str
    user_id: str
    images: List[StoryImage]
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    views_count: int = 0

    @classmethod
    def from_document(cls, doc: Document) -> "Story":
        d = doc.data
        images = []
        for raw in d.get("images") or []:
            extra = {k: v for k, v in raw.items() if k not in ("url", "caption")}
            images.append(StoryImage(url=raw.get("url") or "", caption=raw.get("caption") or "", metadata=extra))
        return cls(
            id=doc.id,
            user_id=d.get("user_id") or "",
            images=images,
            created_at=_ts(d.get("created_at")),
            expires_at=_ts(d.get("expires_at")),
            views_count=int(d.get("views_count") or 0),
        )

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is not None and now < self.expires_at


# --- joined view records ---

@dataclass
class FeedItem:
    post: Post
    author: Author


@dataclass
class CommentItem:
    comment: Comment
    author: Author


@dataclass
class StoryItem:
    story: Story
    author: Author


@dataclass
class ConversationSummary:
    """One row of the conversation list."""
    friend: Author
    last_message_at: Optional[datetime] = None
    last_message_preview: str = ""
    unread_count: int = 0
    is_blocked: bool = False  # no active friendship with this participant


NOTIFICATION_LABELS = {
    NotificationType.FRIEND_REQUEST: ("+", "Friend request"),
    NotificationType.FRIEND_ACCEPTED: ("✓", "Friend request accepted"),
    NotificationType.FRIEND_REJECTED: ("x", "Friend request declined"),
    NotificationType.MESSAGE: ("✉", "New message"),
    NotificationType.LIKE: ("♥", "New like"),
    NotificationType.COMMENT: ("💬", "New comment"),
}

_missing = set(NotificationType) - set(NOTIFICATION_LABELS)
if _missing:
    raise RuntimeError(f"notification types without a label: {sorted(t.value for t in _missing)}")
