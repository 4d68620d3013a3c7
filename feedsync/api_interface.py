"""
Write paths and query factories for every collection.

Writes go straight to the store and are never applied to local state: the
change shows up through the owning view's next snapshot. Denormalized
counters (post likes/comments, story views) only move through store-side
``Increment`` sentinels.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .blob_store import AVATARS, POSTS, STORIES, BlobError, BlobStore, blob_path
from .config import SEARCH_LIMIT, SEARCH_MIN_LENGTH, STORY_LIFETIME
from .data_models import (
    Author,
    ConversationSummary,
    Friendship,
    FriendshipStatus,
    Message,
    NotificationType,
    Post,
    Profile,
    Story,
    ThemePreference,
    unknown_author,
)
from .debug_log import get_logger
from .join import profile_resolver
from .reconciler import CombinedView
from .store import (
    ASC,
    DESC,
    SERVER_TIMESTAMP,
    AlreadyExistsError,
    Document,
    DocumentStore,
    Increment,
    NotFoundError,
    Query,
    WriteOp,
    utcnow,
)
from .subscriber import LiveCollection
from .validator import ValidationError

logger = get_logger("api")

PROFILE_FIELDS = ("name", "avatar", "theme_preference", "color_theme")

# (filename, bytes) pairs for uploads
Upload = Tuple[str, bytes]


def pair_key(a: str, b: str) -> str:
    """Order-independent key for a two-user relation."""
    return "_".join(sorted((a, b)))


def like_id(post_id: str, user_id: str) -> str:
    return f"{post_id}_{user_id}"


def active_stories(stories: Iterable[Story], now: datetime) -> List[Story]:
    """Stories still inside their 24h window at ``now``.

    The active-set query is evaluated when the subscription opens, so views
    re-apply this filter on every render.
    """
    return [s for s in stories if s.is_active(now)]


def split_stories(stories: Iterable[Story], user_id: str) -> Tuple[Optional[Story], List[Story]]:
    own = None
    others = []
    for story in stories:
        if story.user_id == user_id and own is None:
            own = story
        elif story.user_id != user_id:
            others.append(story)
    return own, others


def build_conversations(
    user_id: str,
    friendships: Iterable[Friendship],
    messages: Iterable[Message],
    authors: Dict[str, Author],
) -> List[ConversationSummary]:
    """Conversation rows: accepted friends plus anyone with message history.

    A participant with messages but no accepted friendship is flagged
    ``is_blocked``. Rows are ordered by most recent message, friends without
    messages last.
    """
    friend_ids = [f.other(user_id) for f in friendships
                  if f.status == FriendshipStatus.ACCEPTED and f.involves(user_id)]
    rows: Dict[str, ConversationSummary] = {}
    for fid in friend_ids:
        rows[fid] = ConversationSummary(friend=authors.get(fid) or unknown_author(fid))

    for msg in messages:
        other = msg.receiver_id if msg.sender_id == user_id else msg.sender_id
        if user_id not in (msg.sender_id, msg.receiver_id):
            continue
        row = rows.get(other)
        if row is None:
            row = ConversationSummary(friend=authors.get(other) or unknown_author(other), is_blocked=True)
            rows[other] = row
        if row.last_message_at is None or (msg.created_at and msg.created_at >= row.last_message_at):
            row.last_message_at = msg.created_at
            row.last_message_preview = msg.content
        if msg.receiver_id == user_id and not msg.read:
            row.unread_count += 1

    floor = datetime.min.replace(tzinfo=utcnow().tzinfo)
    return sorted(rows.values(), key=lambda r: r.last_message_at or floor, reverse=True)


class SocialAPI:
    def __init__(self, store: DocumentStore, blobs: Optional[BlobStore] = None, clock=utcnow):
        self.store = store
        self.blobs = blobs
        self.clock = clock

    # --- queries ---
    def live(self, query: Query, name: Optional[str] = None) -> LiveCollection:
        return LiveCollection(self.store, query, name)

    def posts_query(self, user_id: Optional[str] = None) -> Query:
        q = Query("posts")
        if user_id:
            q = q.where("user_id", "==", user_id)
        return q.order("created_at", DESC)

    def comments_query(self, post_id: str) -> Query:
        return Query("comments").where("post_id", "==", post_id).order("created_at", ASC)

    def likes_query(self, post_id: str) -> Query:
        return Query("likes").where("post_id", "==", post_id)

    def friendships_query(self, user_id: str, status: Optional[FriendshipStatus] = None) -> Query:
        q = Query("friends").where("participants", "array-contains", user_id)
        if status is not None:
            q = q.where("status", "==", status.value)
        return q

    def incoming_requests_query(self, user_id: str) -> Query:
        return (Query("friends").where("receiver_id", "==", user_id)
                .where("status", "==", FriendshipStatus.PENDING.value).order("created_at", DESC))

    def outgoing_requests_query(self, user_id: str) -> Query:
        return (Query("friends").where("sender_id", "==", user_id)
                .where("status", "==", FriendshipStatus.PENDING.value).order("created_at", DESC))

    def conversation_query(self, user_id: str, other_id: str) -> Query:
        return Query("messages").where("conversation_id", "==", pair_key(user_id, other_id)).order("created_at", ASC)

    def inbox_query(self, user_id: str) -> Query:
        return Query("messages").where("participants", "array-contains", user_id).order("created_at", ASC)

    def notifications_query(self, user_id: str) -> Query:
        return (Query("notifications").where("user_id", "==", user_id)
                .where("deleted_at", "==", None).order("created_at", DESC))

    def stories_query(self, now: Optional[datetime] = None) -> Query:
        now = now or self.clock()
        return (Query("stories").where("expires_at", ">", now)
                .order("expires_at", DESC).order("created_at", DESC))

    # --- profiles ---
    async def get_profile(self, user_id: str) -> Optional[Profile]:
        doc = await self.store.get("profiles", user_id)
        return Profile.from_document(doc) if doc else None

    async def update_profile(self, user_id: str, **updates: Any) -> None:
        unknown = set(updates) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"cannot update profile fields {sorted(unknown)}")
        if "theme_preference" in updates:
            updates["theme_preference"] = ThemePreference(updates["theme_preference"]).value
        if "name" in updates and not str(updates["name"]).strip():
            raise ValidationError("Name cannot be empty", field="name")
        await self.store.update("profiles", user_id, dict(updates, updated_at=SERVER_TIMESTAMP))

    async def username_exists(self, username: str) -> bool:
        username = username.lower().strip()
        if await self.store.get("usernames", username) is not None:
            return True
        matches = await self.store.query(Query("profiles").where("username", "==", username).take(1))
        return bool(matches)

    async def search_users(self, prefix: str, exclude_id: Optional[str] = None,
                           limit: int = SEARCH_LIMIT) -> List[Profile]:
        """Profiles whose username starts with ``prefix``, by username.

        Prefixes shorter than the minimum search length return nothing.
        """
        prefix = prefix.lower().strip().lstrip("@")
        if len(prefix) < SEARCH_MIN_LENGTH:
            return []
        query = (Query("profiles").where("username", ">=", prefix)
                 .where("username", "<", prefix + "\uf8ff")
                 .order("username").take(limit + 1 if exclude_id else limit))
        docs = await self.store.query(query)
        return [Profile.from_document(d) for d in docs if d.id != exclude_id][:limit]

    async def set_theme(self, user_id: str, theme: ThemePreference, color: Optional[str] = None) -> None:
        updates: Dict[str, Any] = {"theme_preference": theme.value}
        if color:
            updates["color_theme"] = color
        await self.update_profile(user_id, **updates)

    async def upload_avatar(self, user_id: str, upload: Upload) -> str:
        blobs = self._require_blobs()
        filename, data = upload
        url = await blobs.upload(blob_path(AVATARS, user_id, filename), data)
        await self.update_profile(user_id, avatar=url)
        return url

    async def _display_name(self, user_id: str) -> str:
        try:
            profile = await self.get_profile(user_id)
        except Exception:
            logger.warning("profile lookup for %s failed", user_id, exc_info=True)
            return "Someone"
        return (profile.name if profile and profile.name else "Someone")

    def _require_blobs(self) -> BlobStore:
        if self.blobs is None:
            raise BlobError("no blob store configured")
        return self.blobs

    # --- posts ---
    async def create_post(self, user_id: str, content: str, image: Optional[Upload] = None) -> str:
        content = (content or "").strip()
        if not content and image is None:
            raise ValidationError("Post cannot be empty", field="content")
        image_url = None
        if image is not None:
            filename, data = image
            image_url = await self._require_blobs().upload(blob_path(POSTS, user_id, filename), data)
        return await self.store.add("posts", {
            "user_id": user_id,
            "content": content,
            "image_url": image_url,
            "like_count": 0,
            "comment_count": 0,
            "created_at": SERVER_TIMESTAMP,
            "updated_at": SERVER_TIMESTAMP,
        })

    async def _owned_post(self, post_id: str, user_id: str) -> Post:
        doc = await self.store.get("posts", post_id)
        if doc is None:
            raise NotFoundError(f"posts/{post_id} not found")
        post = Post.from_document(doc)
        if post.user_id != user_id:
            raise ValidationError("You can only change your own posts")
        return post

    async def update_post(self, post_id: str, user_id: str, content: str) -> None:
        content = (content or "").strip()
        if not content:
            raise ValidationError("Post cannot be empty", field="content")
        await self._owned_post(post_id, user_id)
        await self.store.update("posts", post_id, {"content": content, "updated_at": SERVER_TIMESTAMP})

    async def delete_post(self, post_id: str, user_id: str) -> None:
        """Delete a post together with its comments and likes in one batch."""
        post = await self._owned_post(post_id, user_id)
        comments = await self.store.query(Query("comments").where("post_id", "==", post_id))
        likes = await self.store.query(self.likes_query(post_id))
        ops = [WriteOp.delete("comments", d.id) for d in comments]
        ops += [WriteOp.delete("likes", d.id) for d in likes]
        ops.append(WriteOp.delete("posts", post_id))
        await self.store.batch_commit(ops)
        if post.image_url and self.blobs is not None:
            try:
                await self.blobs.delete(post.image_url)
            except BlobError:
                logger.warning("could not delete image of post %s", post_id, exc_info=True)

    # --- comments ---
    async def add_comment(self, post_id: str, user_id: str, content: str) -> str:
        content = (content or "").strip()
        if not content:
            raise ValidationError("Comment cannot be empty", field="content")
        post_doc = await self.store.get("posts", post_id)
        if post_doc is None:
            raise NotFoundError(f"posts/{post_id} not found")
        comment = WriteOp.add("comments", {
            "post_id": post_id,
            "user_id": user_id,
            "content": content,
            "created_at": SERVER_TIMESTAMP,
        })
        ops = [comment, WriteOp.update("posts", post_id, {"comment_count": Increment(1)})]
        author_id = post_doc.get("user_id")
        if author_id and author_id != user_id:
            name = await self._display_name(user_id)
            ops.append(self._notification_op(author_id, NotificationType.COMMENT,
                                             f"{name} commented on your post", post_id))
        await self.store.batch_commit(ops)
        return comment.doc_id

    # --- likes ---
    async def has_liked(self, post_id: str, user_id: str) -> bool:
        return await self.store.get("likes", like_id(post_id, user_id)) is not None

    async def like_post(self, post_id: str, user_id: str) -> bool:
        """Like once per (post, user). Returns False if the like already existed.

        The like id is derived from the pair, so concurrent likes collide on
        the same document and only one batch (with its counter bump) commits.
        """
        post_doc = await self.store.get("posts", post_id)
        if post_doc is None:
            raise NotFoundError(f"posts/{post_id} not found")
        ops = [
            WriteOp.create("likes", like_id(post_id, user_id), {
                "post_id": post_id, "user_id": user_id, "created_at": SERVER_TIMESTAMP,
            }),
            WriteOp.update("posts", post_id, {"like_count": Increment(1)}),
        ]
        author_id = post_doc.get("user_id")
        if author_id and author_id != user_id:
            name = await self._display_name(user_id)
            ops.append(self._notification_op(author_id, NotificationType.LIKE, f"{name} liked your post", post_id))
        try:
            await self.store.batch_commit(ops)
        except AlreadyExistsError:
            logger.debug("like %s already exists", like_id(post_id, user_id))
            return False
        return True

    async def unlike_post(self, post_id: str, user_id: str) -> bool:
        """Returns False if there was no like to remove.

        The delete must find the like inside the batch, so of two concurrent
        unlikes only one decrements the counter.
        """
        try:
            await self.store.batch_commit([
                WriteOp.delete("likes", like_id(post_id, user_id), must_exist=True),
                WriteOp.update("posts", post_id, {"like_count": Increment(-1)}),
            ])
        except NotFoundError:
            logger.debug("like %s already gone", like_id(post_id, user_id))
            return False
        return True

    async def toggle_like(self, post_id: str, user_id: str) -> bool:
        """Returns True when the post ends up liked."""
        if await self.has_liked(post_id, user_id):
            await self.unlike_post(post_id, user_id)
            return False
        await self.like_post(post_id, user_id)
        return True

    # --- friends ---
    async def get_friendship(self, a: str, b: str) -> Optional[Friendship]:
        doc = await self.store.get("friends", pair_key(a, b))
        return Friendship.from_document(doc) if doc else None

    async def are_friends(self, a: str, b: str) -> bool:
        friendship = await self.get_friendship(a, b)
        return friendship is not None and friendship.status == FriendshipStatus.ACCEPTED

    async def send_friend_request(self, sender_id: str, receiver_id: str) -> str:
        if sender_id == receiver_id:
            raise ValidationError("You cannot send a friend request to yourself")
        key = pair_key(sender_id, receiver_id)
        existing = await self.get_friendship(sender_id, receiver_id)
        if existing is not None:
            if existing.status == FriendshipStatus.ACCEPTED:
                raise ValidationError("You are already friends")
            raise ValidationError("A friend request is already pending")
        name = await self._display_name(sender_id)
        ops = [
            WriteOp.create("friends", key, {
                "sender_id": sender_id,
                "receiver_id": receiver_id,
                "participants": sorted((sender_id, receiver_id)),
                "status": FriendshipStatus.PENDING.value,
                "created_at": SERVER_TIMESTAMP,
                "updated_at": SERVER_TIMESTAMP,
            }),
            self._notification_op(receiver_id, NotificationType.FRIEND_REQUEST,
                                  f"{name} sent you a friend request", key),
        ]
        try:
            await self.store.batch_commit(ops)
        except AlreadyExistsError:
            raise ValidationError("A friend request is already pending")
        return key

    async def _pending_for(self, friendship_id: str, receiver_id: str) -> Friendship:
        doc = await self.store.get("friends", friendship_id)
        if doc is None:
            raise NotFoundError(f"friends/{friendship_id} not found")
        friendship = Friendship.from_document(doc)
        if friendship.receiver_id != receiver_id:
            raise ValidationError("Only the receiver can answer a friend request")
        if friendship.status != FriendshipStatus.PENDING:
            raise ValidationError(f"Friend request is already {friendship.status.value}")
        return friendship

    async def accept_friend_request(self, friendship_id: str, user_id: str) -> None:
        friendship = await self._pending_for(friendship_id, user_id)
        name = await self._display_name(user_id)
        await self.store.batch_commit([
            WriteOp.update("friends", friendship_id,
                           {"status": FriendshipStatus.ACCEPTED.value, "updated_at": SERVER_TIMESTAMP}),
            self._notification_op(friendship.sender_id, NotificationType.FRIEND_ACCEPTED,
                                  f"{name} accepted your friend request", friendship_id),
        ])

    async def reject_friend_request(self, friendship_id: str, user_id: str) -> None:
        """Rejected requests are removed so the pair can start over later."""
        friendship = await self._pending_for(friendship_id, user_id)
        name = await self._display_name(user_id)
        await self.store.batch_commit([
            WriteOp.delete("friends", friendship_id),
            self._notification_op(friendship.sender_id, NotificationType.FRIEND_REJECTED,
                                  f"{name} declined your friend request", friendship_id),
        ])

    async def remove_friend(self, user_id: str, friend_id: str) -> None:
        friendship = await self.get_friendship(user_id, friend_id)
        if friendship is None:
            raise NotFoundError("no friendship to remove")
        await self.store.delete("friends", friendship.id)

    # --- messages ---
    async def send_message(self, sender_id: str, receiver_id: str, content: str) -> str:
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message cannot be empty", field="content")
        if not await self.are_friends(sender_id, receiver_id):
            raise ValidationError("You can only message your friends")
        name = await self._display_name(sender_id)
        message = WriteOp.add("messages", {
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "participants": sorted((sender_id, receiver_id)),
            "conversation_id": pair_key(sender_id, receiver_id),
            "content": content,
            "read": False,
            "created_at": SERVER_TIMESTAMP,
        })
        preview = content if len(content) <= 60 else content[:57] + "..."
        await self.store.batch_commit([
            message,
            self._notification_op(receiver_id, NotificationType.MESSAGE, f"{name}: {preview}", message.doc_id),
        ])
        return message.doc_id

    async def mark_message_read(self, message_id: str, user_id: str) -> None:
        doc = await self.store.get("messages", message_id)
        if doc is None:
            raise NotFoundError(f"messages/{message_id} not found")
        if doc.get("receiver_id") != user_id:
            raise ValidationError("Only the receiver can mark a message as read")
        if not doc.get("read"):
            await self.store.update("messages", message_id, {"read": True})

    async def mark_conversation_read(self, user_id: str, other_id: str) -> int:
        docs = await self.store.query(self.conversation_query(user_id, other_id))
        ops = [WriteOp.update("messages", d.id, {"read": True})
               for d in docs if d.get("receiver_id") == user_id and not d.get("read")]
        await self.store.batch_commit(ops)
        return len(ops)

    async def load_conversations(self, user_id: str) -> List[ConversationSummary]:
        """Conversation list, reading friends strictly before messages."""
        friend_docs = await self.store.query(self.friendships_query(user_id, FriendshipStatus.ACCEPTED))
        friendships = [Friendship.from_document(d) for d in friend_docs]
        message_docs = await self.store.query(self.inbox_query(user_id))
        messages = [Message.from_document(d) for d in message_docs]
        return await self.conversations_from(user_id, friendships, messages)

    async def conversations_from(
        self, user_id: str, friendships: Sequence[Friendship], messages: Sequence[Message]
    ) -> List[ConversationSummary]:
        ids = [f.other(user_id) for f in friendships]
        ids += [m.receiver_id if m.sender_id == user_id else m.sender_id for m in messages]
        authors = await profile_resolver(self.store).lookup(ids)
        return build_conversations(user_id, friendships, messages, authors)

    def conversations_view(self, user_id: str) -> CombinedView:
        """Live conversation list, rebuilt when messages or accepted friendships change."""

        async def build(message_docs: List[Document], friend_docs: List[Document]) -> List[ConversationSummary]:
            friendships = [Friendship.from_document(d) for d in friend_docs]
            messages = [Message.from_document(d) for d in message_docs]
            return await self.conversations_from(user_id, friendships, messages)

        return CombinedView(
            [self.live(self.inbox_query(user_id), "inbox"),
             self.live(self.friendships_query(user_id, FriendshipStatus.ACCEPTED), "friends")],
            build,
            name="conversations",
        )

    # --- notifications ---
    def _notification_op(self, owner_id: str, kind: NotificationType, content: str,
                         reference_id: Optional[str] = None) -> WriteOp:
        return WriteOp.add("notifications", {
            "user_id": owner_id,
            "type": kind.value,
            "content": content,
            "reference_id": reference_id,
            "read": False,
            "deleted_at": None,
            "created_at": SERVER_TIMESTAMP,
        })

    async def notify(self, owner_id: str, kind: NotificationType, content: str,
                     reference_id: Optional[str] = None) -> str:
        op = self._notification_op(owner_id, kind, content, reference_id)
        await self.store.batch_commit([op])
        return op.doc_id

    async def _owned_notification(self, notification_id: str, user_id: str) -> Document:
        doc = await self.store.get("notifications", notification_id)
        if doc is None or doc.get("user_id") != user_id:
            raise NotFoundError(f"notifications/{notification_id} not found")
        return doc

    async def mark_notification_read(self, notification_id: str, user_id: str) -> None:
        await self._owned_notification(notification_id, user_id)
        await self.store.update("notifications", notification_id, {"read": True})

    async def _live_notifications(self, user_id: str) -> List[Document]:
        return await self.store.query(self.notifications_query(user_id))

    async def mark_all_notifications_read(self, user_id: str) -> int:
        docs = await self._live_notifications(user_id)
        ops = [WriteOp.update("notifications", d.id, {"read": True}) for d in docs if not d.get("read")]
        await self.store.batch_commit(ops)
        return len(ops)

    async def delete_notification(self, notification_id: str, user_id: str) -> None:
        """Soft delete: set the tombstone so live queries drop it."""
        await self._owned_notification(notification_id, user_id)
        await self.store.update("notifications", notification_id, {"deleted_at": SERVER_TIMESTAMP})

    async def clear_notifications(self, user_id: str) -> int:
        docs = await self._live_notifications(user_id)
        ops = [WriteOp.update("notifications", d.id, {"deleted_at": SERVER_TIMESTAMP}) for d in docs]
        await self.store.batch_commit(ops)
        return len(ops)

    # --- stories ---
    async def _upload_story_images(self, user_id: str, images: Sequence[Tuple[str, bytes, str]]) -> List[Dict[str, Any]]:
        if not images:
            raise ValidationError("A story needs at least one photo")
        urls = await self._require_blobs().upload_many(STORIES, user_id, [(name, data) for name, data, _ in images])
        return [{"url": url, "caption": caption, "filename": name}
                for url, (name, _, caption) in zip(urls, images)]

    async def create_story(self, user_id: str, images: Sequence[Tuple[str, bytes, str]]) -> str:
        """``images`` holds ``(filename, data, caption)`` triples."""
        entries = await self._upload_story_images(user_id, images)
        # Expiry is fixed here and never recomputed.
        expires_at = self.clock() + STORY_LIFETIME
        return await self.store.add("stories", {
            "user_id": user_id,
            "images": entries,
            "created_at": SERVER_TIMESTAMP,
            "expires_at": expires_at,
            "views_count": 0,
        })

    async def _owned_story(self, story_id: str, user_id: str) -> Document:
        doc = await self.store.get("stories", story_id)
        if doc is None:
            raise NotFoundError(f"stories/{story_id} not found")
        if doc.get("user_id") != user_id:
            raise ValidationError("You can only change your own story")
        return doc

    async def add_photos_to_story(self, story_id: str, user_id: str,
                                  images: Sequence[Tuple[str, bytes, str]]) -> None:
        doc = await self._owned_story(story_id, user_id)
        entries = await self._upload_story_images(user_id, images)
        await self.store.update("stories", story_id, {"images": list(doc.get("images") or []) + entries})

    async def delete_story_photos(self, story_id: str, user_id: str, indices: Iterable[int]) -> None:
        """Drop images by index; a story left without images is deleted."""
        doc = await self._owned_story(story_id, user_id)
        drop = set(indices)
        images = list(doc.get("images") or [])
        kept = [img for i, img in enumerate(images) if i not in drop]
        if kept:
            await self.store.update("stories", story_id, {"images": kept})
        else:
            await self.store.delete("stories", story_id)
        if self.blobs is not None:
            for i, img in enumerate(images):
                if i in drop and img.get("url"):
                    try:
                        await self.blobs.delete(img["url"])
                    except BlobError:
                        logger.warning("could not delete story image %s", img["url"], exc_info=True)

    async def increment_story_views(self, story_id: str) -> bool:
        try:
            await self.store.update("stories", story_id, {"views_count": Increment(1)})
        except NotFoundError:
            return False
        return True
