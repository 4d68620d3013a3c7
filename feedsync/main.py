from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical, VerticalScroll
from textual.reactive import reactive
from textual.widgets import Button, Input, Static
from rich.text import Text
from datetime import datetime
from typing import Awaitable, List, Optional
import logging

from .api_interface import SocialAPI, active_stories, split_stories
from .auth import AuthError, FirebaseAuthProvider, MemoryAuthProvider
from .blob_store import BlobError, MemoryBlobStore, RestBlobStore
from .config import SEARCH_MIN_LENGTH, Settings
from .data_models import (
    NOTIFICATION_LABELS,
    Comment,
    CommentItem,
    ConversationSummary,
    FeedItem,
    Friendship,
    Message,
    Notification,
    Post,
    Profile,
    Story,
    StoryItem,
    ThemePreference,
    UsernameStatus,
)
from .db_seed import DEMO_EMAIL, DEMO_PASSWORD, seed
from .debug_log import get_logger
from .grouping import format_time_ago, group_by_day
from .join import profile_resolver
from .memory_store import MemoryDocumentStore
from .reconciler import SyncedView, ViewState, mapped
from .rest_store import RestDocumentStore
from .session import AppContext
from .store import StoreError, utcnow
from .validator import DebouncedSearch, UsernameValidator, ValidationError, can_submit

logger = get_logger("main")


def build_context(settings: Settings) -> AppContext:
    """Wire the store, blob store and auth provider selected by ``settings``."""
    if settings.demo_mode:
        store = MemoryDocumentStore(latency=0.01)
        return AppContext(MemoryAuthProvider(), SocialAPI(store, MemoryBlobStore()))
    if not settings.firebase_api_key:
        raise RuntimeError(
            "FIREBASE_API_KEY environment variable is not set. "
            "Set it together with BACKEND_URL, or unset BACKEND_URL to run the demo."
        )
    store = RestDocumentStore(settings.backend_url, timeout=settings.http_timeout,
                              poll_interval=settings.poll_interval)
    blobs = RestBlobStore(settings.backend_url, timeout=settings.http_timeout)
    return AppContext(FirebaseAuthProvider(settings.firebase_api_key), SocialAPI(store, blobs))


# ───────── Synced panels ─────────


class SyncedPanel(VerticalScroll):
    """A list panel bound to one SyncedView, re-rendered wholesale on publish."""

    can_focus = True
    cursor_position = reactive(0)
    title = "panel"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.view: Optional[SyncedView] = None
        self._unwatch = None

    @property
    def context(self) -> AppContext:
        return self.app.context

    def compose(self) -> ComposeResult:
        yield Static(self.title, classes="panel-header", markup=False)
        yield Static("loading…", classes="panel-body")

    def make_view(self) -> SyncedView:
        raise NotImplementedError

    def render_items(self, state: ViewState) -> Text:
        raise NotImplementedError

    def on_mount(self) -> None:
        self.view = self.make_view()
        self._unwatch = self.view.state.watch(lambda _: self.refresh_body())
        self.view.start()

    def on_unmount(self) -> None:
        if self._unwatch is not None:
            self._unwatch()
        if self.view is not None:
            self.view.close()

    def refresh_body(self) -> None:
        if self.view is None:
            return
        state = self.view.state
        if state.items and self.cursor_position >= len(state.items):
            self.cursor_position = len(state.items) - 1
        body = self.query_one(".panel-body", Static)
        text = self.render_items(state)
        if state.error:
            text.append(f"\n⚠ {state.error}", style="bold red")
        body.update(text)

    def watch_cursor_position(self, old: int, new: int) -> None:
        self.refresh_body()

    @property
    def selected(self):
        items = self.view.state.items if self.view else []
        if 0 <= self.cursor_position < len(items):
            return items[self.cursor_position]
        return None

    def key_j(self) -> None:
        """Vim-style down navigation"""
        if self.view and self.cursor_position < len(self.view.state.items) - 1:
            self.cursor_position += 1

    def key_k(self) -> None:
        """Vim-style up navigation"""
        if self.cursor_position > 0:
            self.cursor_position -= 1

    def key_g(self) -> None:
        self.cursor_position = 0

    def key_G(self) -> None:
        if self.view:
            self.cursor_position = max(0, len(self.view.state.items) - 1)

    def _line(self, text: Text, index: int, content: str) -> None:
        style = "reverse" if index == self.cursor_position and self.has_focus else ""
        text.append(content + "\n", style=style)


class FeedPanel(SyncedPanel):
    """Community feed: posts joined with their authors."""

    title = "feed | [j/k] move [l] like [c] comments [x] delete"

    def make_view(self) -> SyncedView:
        api = self.context.api
        resolver = profile_resolver(api.store)

        async def join(docs):
            posts = [Post.from_document(d) for d in docs]
            return await resolver.resolve(posts, lambda p: p.user_id, FeedItem)

        return SyncedView(api.live(api.posts_query(), "posts"), join)

    def render_items(self, state: ViewState) -> Text:
        text = Text()
        if not state.loaded:
            return Text("loading…")
        if not state.items:
            return Text("No posts yet. Be the first to share something!")
        for i, item in enumerate(state.items):
            post = item.post
            header = f"{item.author.name} @{item.author.username} • {format_time_ago(post.created_at)}"
            self._line(text, i, header)
            text.append(f"  {post.content}\n")
            if post.image_url:
                text.append(f"  [image] {post.image_url}\n", style="dim")
            text.append(f"  ♥ {post.like_count}  💬 {post.comment_count}\n\n", style="dim")
        return text

    async def key_l(self) -> None:
        item = self.selected
        if item is None or not self.context.user_id:
            return
        await self.app.run_guarded(self.context.api.toggle_like(item.post.id, self.context.user_id))

    async def key_x(self) -> None:
        item = self.selected
        if item is None or item.post.user_id != self.context.user_id:
            return
        await self.app.run_guarded(self.context.api.delete_post(item.post.id, self.context.user_id), "Post deleted")

    def key_c(self) -> None:
        item = self.selected
        if item is not None:
            self.app.post_comments(item.post)


class CommentsPanel(SyncedPanel):
    title = "comments"

    def __init__(self, post: Post, **kwargs):
        super().__init__(**kwargs)
        self.post = post

    def make_view(self) -> SyncedView:
        api = self.context.api
        resolver = profile_resolver(api.store)

        async def join(docs):
            comments = [Comment.from_document(d) for d in docs]
            return await resolver.resolve(comments, lambda c: c.user_id, CommentItem)

        return SyncedView(api.live(api.comments_query(self.post.id), f"comments:{self.post.id}"), join)

    def render_items(self, state: ViewState) -> Text:
        text = Text(f"{self.post.content}\n\n", style="bold")
        if state.loaded and not state.items:
            text.append("No comments yet.")
        for i, item in enumerate(state.items):
            self._line(text, i, f"@{item.author.username} • {format_time_ago(item.comment.created_at)}")
            text.append(f"  {item.comment.content}\n")
        return text


class StoriesBar(SyncedPanel):
    title = "stories"
    can_focus = False

    def make_view(self) -> SyncedView:
        api = self.context.api
        resolver = profile_resolver(api.store)

        async def join(docs):
            stories = [Story.from_document(d) for d in docs]
            return await resolver.resolve(stories, lambda s: s.user_id, StoryItem)

        return SyncedView(api.live(api.stories_query(), "stories"), join)

    def render_items(self, state: ViewState) -> Text:
        now = utcnow()
        by_story = {item.story.id: item for item in state.items}
        live = active_stories([item.story for item in state.items], now)
        own, others = split_stories(live, self.context.user_id or "")
        parts = ["(+) your story" if own is None else f"● you ({len(own.images)})"]
        parts += [f"● {by_story[s.id].author.username} ({len(s.images)})" for s in others]
        return Text("  ".join(parts))


class NotificationsPanel(SyncedPanel):
    title = "notifications | [r] read [d] delete [R] read all [C] clear all"

    def make_view(self) -> SyncedView:
        api = self.context.api
        query = api.notifications_query(self.context.user_id or "")
        return SyncedView(api.live(query, "notifications"), mapped(Notification.from_document))

    def render_items(self, state: ViewState) -> Text:
        if not state.loaded:
            return Text("loading…")
        unread = len([n for n in state.items if not n.read])
        text = Text(f"{unread} unread\n\n", style="bold")
        if not state.items:
            text.append("You're all caught up.")
        for i, n in enumerate(state.items):
            icon, label = NOTIFICATION_LABELS[n.type]
            marker = "🔵 " if not n.read else "   "
            self._line(text, i, f"{marker}{icon} {label} • {format_time_ago(n.created_at)}")
            text.append(f"     {n.content}\n")
        return text

    async def key_r(self) -> None:
        n = self.selected
        if n is not None:
            await self.app.run_guarded(self.context.api.mark_notification_read(n.id, self.context.user_id))

    async def key_d(self) -> None:
        n = self.selected
        if n is not None:
            await self.app.run_guarded(self.context.api.delete_notification(n.id, self.context.user_id))

    async def key_R(self) -> None:
        await self.app.run_guarded(self.context.api.mark_all_notifications_read(self.context.user_id))

    async def key_C(self) -> None:
        await self.app.run_guarded(self.context.api.clear_notifications(self.context.user_id),
                                   "Notifications cleared")


class ConversationsPanel(SyncedPanel):
    title = "conversations | [enter] open [a] accept request"

    def make_view(self) -> SyncedView:
        return self.context.api.conversations_view(self.context.user_id or "")

    def render_items(self, state: ViewState) -> Text:
        if not state.loaded:
            return Text("loading…")
        if not state.items:
            return Text("No conversations yet. Add friends to start chatting.")
        text = Text()
        for i, row in enumerate(state.items):
            row: ConversationSummary
            unread = f" ({row.unread_count})" if row.unread_count else ""
            blocked = " [no longer friends]" if row.is_blocked else ""
            when = row.last_message_at.astimezone().strftime("%H:%M") if row.last_message_at else ""
            self._line(text, i, f"{row.friend.name}{unread}{blocked} {when}")
            text.append(f"  {row.last_message_preview}\n", style="dim")
        return text

    def key_enter(self) -> None:
        row = self.selected
        if row is not None:
            self.app.open_chat(row)


class ChatPanel(SyncedPanel):
    title = "chat"

    def __init__(self, conversation: ConversationSummary, **kwargs):
        super().__init__(**kwargs)
        self.conversation = conversation

    def make_view(self) -> SyncedView:
        api = self.context.api
        query = api.conversation_query(self.context.user_id or "", self.conversation.friend.id)
        return SyncedView(api.live(query, f"chat:{self.conversation.friend.id}"), mapped(Message.from_document))

    def render_items(self, state: ViewState) -> Text:
        me = self.context.user_id
        text = Text(f"@{self.conversation.friend.username}\n", style="bold")
        now = datetime.now().astimezone()
        groups = group_by_day(state.items, lambda m: m.created_at or utcnow(), now=now)
        for group in groups:
            text.append(f"\n── {group.label} ──\n", style="dim")
            for msg in group.items:
                stamp = (msg.created_at or utcnow()).astimezone().strftime("%H:%M")
                who = "you" if msg.sender_id == me else self.conversation.friend.name
                style = "green" if msg.sender_id == me else ""
                text.append(f"{stamp} {who}: {msg.content}\n", style=style)
        return text


# ───────── Views ─────────


class SignInView(Vertical):
    def compose(self) -> ComposeResult:
        yield Static("sign in", classes="panel-header")
        yield Input(placeholder="email", id="signin-email")
        yield Input(placeholder="password", password=True, id="signin-password")
        with Horizontal(classes="button-row"):
            yield Button("Sign in", id="signin-submit", variant="primary")
            yield Button("Create account", id="signin-register")
        if self.app.settings.demo_mode:
            yield Static(f"demo: {DEMO_EMAIL} / {DEMO_PASSWORD}", classes="hint", markup=False)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "signin-register":
            await self.app.show_view("register")
        elif event.button.id == "signin-submit":
            await self._submit()

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        await self._submit()

    async def _submit(self) -> None:
        email = self.query_one("#signin-email", Input).value
        password = self.query_one("#signin-password", Input).value
        await self.app.run_guarded(self.app.context.auth_service.login(email, password))


class RegisterView(Vertical):
    def compose(self) -> ComposeResult:
        yield Static("create account", classes="panel-header")
        yield Input(placeholder="name", id="reg-name")
        yield Input(placeholder="username", id="reg-username")
        yield Static("", id="reg-username-status", markup=False)
        yield Input(placeholder="email", id="reg-email")
        yield Input(placeholder="password (6+ characters)", password=True, id="reg-password")
        with Horizontal(classes="button-row"):
            yield Button("Register", id="reg-submit", variant="primary")
            yield Button("Back", id="reg-back")

    def on_mount(self) -> None:
        self.validator = UsernameValidator(self.app.context.api.username_exists, on_change=self._on_status)

    def on_unmount(self) -> None:
        self.validator.cancel()

    def _on_status(self, status: UsernameStatus, value: str) -> None:
        status_line = self.query_one("#reg-username-status", Static)
        status_line.update(self.validator.message)
        status_line.set_class(status in (UsernameStatus.TAKEN, UsernameStatus.INVALID), "error")

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "reg-username":
            self.validator.on_input(event.value)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "reg-back":
            await self.app.show_view("signin")
            return
        if event.button.id != "reg-submit":
            return
        if not can_submit(self.validator.status):
            self.app.notify(self.validator.message or "Please fix the username", severity="warning")
            return
        await self.app.run_guarded(self.app.context.auth_service.register(
            self.query_one("#reg-email", Input).value,
            self.query_one("#reg-password", Input).value,
            self.query_one("#reg-name", Input).value,
            self.query_one("#reg-username", Input).value,
        ), "Welcome aboard!")


class FeedView(Vertical):
    def compose(self) -> ComposeResult:
        yield StoriesBar(id="stories-bar")
        yield Input(placeholder="What's on your mind? (Enter to post)", id="new-post")
        yield FeedPanel(id="feed-panel")

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        ctx = self.app.context
        if await self.app.run_guarded(ctx.api.create_post(ctx.user_id, event.value), "Posted!"):
            event.input.value = ""


class CommentsView(Vertical):
    def __init__(self, post: Post, **kwargs):
        super().__init__(**kwargs)
        self.post = post

    def compose(self) -> ComposeResult:
        yield CommentsPanel(self.post, id="comments-panel")
        yield Input(placeholder="Write a comment… (Enter to send, F1 back to feed)", id="new-comment")

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        ctx = self.app.context
        if await self.app.run_guarded(ctx.api.add_comment(self.post.id, ctx.user_id, event.value)):
            event.input.value = ""


class MessagesView(Horizontal):
    def __init__(self, conversation: Optional[ConversationSummary] = None, **kwargs):
        super().__init__(**kwargs)
        self.conversation = conversation

    def compose(self) -> ComposeResult:
        yield ConversationsPanel(id="conversations")
        with Vertical(id="chat-column"):
            if self.conversation is not None:
                yield ChatPanel(self.conversation, id="chat")
                if self.conversation.is_blocked:
                    yield Static("You are no longer friends with this user.", classes="hint")
                else:
                    yield Input(placeholder="Type message and press Enter…", id="message-input")
            else:
                yield Static("Select a conversation", classes="hint")

    async def on_mount(self) -> None:
        if self.conversation is not None and self.conversation.unread_count:
            ctx = self.app.context
            await self.app.run_guarded(ctx.api.mark_conversation_read(ctx.user_id, self.conversation.friend.id))

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        ctx = self.app.context
        sent = await self.app.run_guarded(
            ctx.api.send_message(ctx.user_id, self.conversation.friend.id, event.value)
        )
        if sent:
            event.input.value = ""


class RequestsPanel(SyncedPanel):
    title = "friend requests | [a] accept [x] decline"

    def make_view(self) -> SyncedView:
        api = self.context.api
        resolver = profile_resolver(api.store)

        async def join(docs):
            requests = [Friendship.from_document(d) for d in docs]
            return await resolver.resolve(requests, lambda f: f.sender_id, lambda f, a: (f, a))

        return SyncedView(api.live(api.incoming_requests_query(self.context.user_id or ""), "requests"), join)

    def render_items(self, state: ViewState) -> Text:
        if state.loaded and not state.items:
            return Text("No pending requests.")
        text = Text()
        for i, (friendship, author) in enumerate(state.items):
            self._line(text, i, f"{author.name} @{author.username} • {format_time_ago(friendship.created_at)}")
        return text

    async def key_a(self) -> None:
        item = self.selected
        if item is not None:
            await self.app.run_guarded(self.context.api.accept_friend_request(item[0].id, self.context.user_id),
                                       "Friend request accepted")

    async def key_x(self) -> None:
        item = self.selected
        if item is not None:
            await self.app.run_guarded(self.context.api.reject_friend_request(item[0].id, self.context.user_id))


class NotificationsView(Vertical):
    def compose(self) -> ComposeResult:
        yield RequestsPanel(id="requests-panel")
        yield NotificationsPanel(id="notifications-panel")


class UserSearchPanel(VerticalScroll):
    """Results of the people search; [a] sends a friend request."""

    can_focus = True
    cursor_position = reactive(0)

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.results: List[Profile] = []
        self.term = ""

    def compose(self) -> ComposeResult:
        yield Static("people | [j/k] move [a] add friend", classes="panel-header", markup=False)
        yield Static(f"Type at least {SEARCH_MIN_LENGTH} characters to search.", classes="panel-body")

    def show(self, results: List[Profile], term: str) -> None:
        self.results = results
        self.term = term
        if self.cursor_position >= len(results):
            self.cursor_position = max(0, len(results) - 1)
        self.refresh_body()

    def refresh_body(self) -> None:
        if len(self.term) < SEARCH_MIN_LENGTH:
            text = Text(f"Type at least {SEARCH_MIN_LENGTH} characters to search.")
        elif not self.results:
            text = Text(f"No users found for \"{self.term}\".")
        else:
            text = Text()
            for i, profile in enumerate(self.results):
                style = "reverse" if i == self.cursor_position and self.has_focus else ""
                text.append(f"{profile.name} @{profile.username}\n", style=style)
        self.query_one(".panel-body", Static).update(text)

    def watch_cursor_position(self, old: int, new: int) -> None:
        self.refresh_body()

    def key_j(self) -> None:
        if self.cursor_position < len(self.results) - 1:
            self.cursor_position += 1

    def key_k(self) -> None:
        if self.cursor_position > 0:
            self.cursor_position -= 1

    async def key_a(self) -> None:
        if not 0 <= self.cursor_position < len(self.results):
            return
        ctx = self.app.context
        profile = self.results[self.cursor_position]
        await self.app.run_guarded(ctx.api.send_friend_request(ctx.user_id, profile.id),
                                   f"Friend request sent to @{profile.username}")


class SearchView(Vertical):
    def compose(self) -> ComposeResult:
        yield Input(placeholder="Search people by username…", id="search-input")
        yield UserSearchPanel(id="search-results")

    def on_mount(self) -> None:
        ctx = self.app.context
        self.search = DebouncedSearch(lambda term: ctx.api.search_users(term, exclude_id=ctx.user_id),
                                      on_results=self._on_results)

    def on_unmount(self) -> None:
        self.search.cancel()

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "search-input":
            self.search.on_input(event.value)

    def _on_results(self, results: List[Profile]) -> None:
        self.query_one(UserSearchPanel).show(results, self.search.term)


# ───────── App ─────────


class FeedSyncApp(App):
    CSS = """
    #app-header, #app-footer { height: 1; background: $boost; padding: 0 1; }
    #screen-container { height: 1fr; }
    .panel-header { color: $accent; text-style: bold; }
    .hint { color: $text-muted; padding: 1; }
    .error { color: $error; }
    .button-row { height: auto; }
    SyncedPanel { border: round $primary-background; padding: 0 1; }
    SyncedPanel:focus { border: round $accent; }
    #stories-bar { height: 4; }
    #requests-panel { height: 10; }
    #conversations { width: 36; }
    #search-results { height: 1fr; }
    """

    BINDINGS = [
        Binding("f1", "show_view('feed')", "Feed"),
        Binding("f2", "show_view('messages')", "Messages"),
        Binding("f3", "show_view('notifications')", "Notifications"),
        Binding("f5", "show_view('search')", "Search"),
        Binding("f4", "toggle_theme", "Theme"),
        Binding("ctrl+o", "sign_out", "Sign out"),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    current_view = reactive("signin")

    def __init__(self, context: AppContext, settings: Settings, **kwargs):
        super().__init__(**kwargs)
        self.context = context
        self.settings = settings
        self._switching = False

    def compose(self) -> ComposeResult:
        yield Static("feedsync", id="app-header", markup=False)
        yield Container(SignInView(), id="screen-container")
        yield Static("[F1] Feed [F2] Messages [F3] Notifications [F4] Theme [F5] Search [^O] Sign out [^Q] Quit",
                     id="app-footer", markup=False)

    async def on_mount(self) -> None:
        if self.settings.demo_mode:
            await seed(self.context.api, self.context.auth)
        self.context.watch(self._on_context)
        self.context.start()
        if isinstance(self.context.auth, FirebaseAuthProvider):
            # resume the keyring session, if any
            await self.run_guarded(self.context.auth.restore())

    def _on_context(self, ctx: AppContext) -> None:
        who = f"@{ctx.profile.username}" if ctx.profile else (ctx.account.email if ctx.account else "signed out")
        self.query_one("#app-header", Static).update(f"feedsync [{self.current_view}] {who}")
        self.theme = "textual-dark" if ctx.theme == ThemePreference.DARK else "textual-light"
        if ctx.signed_in and self.current_view in ("signin", "register"):
            self.call_later(self.show_view, "feed")
        elif not ctx.signed_in and self.current_view not in ("signin", "register"):
            self.call_later(self.show_view, "signin")

    async def show_view(self, name: str, **kwargs) -> None:
        if self._switching:
            return
        if not self.context.signed_in and name not in ("signin", "register"):
            return
        view_map = {
            "signin": SignInView,
            "register": RegisterView,
            "feed": FeedView,
            "comments": CommentsView,
            "messages": MessagesView,
            "notifications": NotificationsView,
            "search": SearchView,
        }
        self._switching = True
        try:
            container = self.query_one("#screen-container", Container)
            await container.remove_children()
            await container.mount(view_map[name](**kwargs))
            self.current_view = name
            self._on_context(self.context)
        finally:
            self._switching = False

    async def action_show_view(self, name: str) -> None:
        await self.show_view(name)

    def post_comments(self, post: Post) -> None:
        self.call_later(self.show_view, "comments", post=post)

    def open_chat(self, conversation: ConversationSummary) -> None:
        self.call_later(self.show_view, "messages", conversation=conversation)

    async def action_toggle_theme(self) -> None:
        target = ThemePreference.LIGHT if self.context.theme == ThemePreference.DARK else ThemePreference.DARK
        await self.run_guarded(self.context.set_theme(target))

    async def action_sign_out(self) -> None:
        if await self.run_guarded(self.context.sign_out(), "Signed out"):
            self.context.start()

    async def run_guarded(self, operation: Awaitable, success: Optional[str] = None) -> bool:
        """Await a remote operation; every failure ends in a toast, never a crash."""
        try:
            await operation
        except ValidationError as e:
            self.notify(str(e), severity="warning", timeout=3)
            return False
        except AuthError as e:
            self.notify(e.user_message, severity="error", timeout=4)
            return False
        except (StoreError, BlobError) as e:
            logger.warning("remote call failed: %s", e)
            self.notify("Something went wrong. Please try again.", severity="error", timeout=3)
            return False
        except Exception:
            logger.exception("unexpected error at UI boundary")
            self.notify("Unexpected error. See the debug log for details.", severity="error", timeout=3)
            return False
        if success:
            self.notify(success, timeout=2)
        return True


def main():
    settings = Settings.from_env()
    logger.debug("starting feedsync (demo=%s)", settings.demo_mode)
    try:
        FeedSyncApp(build_context(settings), settings).run()
    except Exception:
        logging.getLogger("feedsync").exception("Exception occurred while running FeedSyncApp:")
        raise


if __name__ == "__main__":
    main()
