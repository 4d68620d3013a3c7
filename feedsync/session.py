"""
Application context: the signed-in account, its profile and theme.

Created once at startup and passed to every view. ``start`` subscribes to
the auth provider exactly once; ``sign_out`` clears state, releases every
view scope registered with the context and unsubscribes.
"""
import asyncio
from typing import Callable, List, Optional

from .api_interface import SocialAPI
from .auth import AuthProvider, AuthService
from .data_models import Account, Profile, ThemePreference
from .debug_log import get_logger
from .subscriber import SubscriptionScope

logger = get_logger("session")

ContextListener = Callable[["AppContext"], None]


class AppContext:
    def __init__(self, auth: AuthProvider, api: SocialAPI):
        self.auth = auth
        self.api = api
        self.auth_service = AuthService(auth, api.store)
        self.account: Optional[Account] = None
        self.profile: Optional[Profile] = None
        self.scope = SubscriptionScope("app")
        self._unsubscribe_auth: Optional[Callable[[], None]] = None
        self._listeners: List[ContextListener] = []
        self._profile_task: Optional[asyncio.Task] = None

    # --- lifecycle ---
    def start(self) -> None:
        if self._unsubscribe_auth is not None:
            return
        self._unsubscribe_auth = self.auth.on_auth_state_changed(self._on_auth)
        logger.debug("app context started")

    def _on_auth(self, account: Optional[Account]) -> None:
        previous = self.account
        self.account = account
        if account is None:
            self.profile = None
            if previous is not None:
                self._reset_scope()
        else:
            self._sync_token()
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                if self._profile_task is not None and not self._profile_task.done():
                    self._profile_task.cancel()
                self._profile_task = loop.create_task(self.reload_profile())
        self._notify()

    def _sync_token(self) -> None:
        set_token = getattr(self.api.store, "set_token", None)
        if set_token is not None:
            set_token(self.auth.id_token)

    def _reset_scope(self) -> None:
        self.scope.close()
        self.scope = SubscriptionScope("app")

    async def reload_profile(self) -> Optional[Profile]:
        if self.account is None:
            return None
        try:
            self.profile = await self.api.get_profile(self.account.id)
        except Exception:
            logger.exception("could not load profile for %s", self.account.id)
            self.profile = None
        self._notify()
        return self.profile

    async def sign_out(self) -> None:
        try:
            await self.auth_service.logout()
        finally:
            self.teardown()

    def teardown(self) -> None:
        self.account = None
        self.profile = None
        if self._profile_task is not None and not self._profile_task.done():
            self._profile_task.cancel()
        self._reset_scope()
        if self._unsubscribe_auth is not None:
            self._unsubscribe_auth()
            self._unsubscribe_auth = None
        self._notify()
        logger.debug("app context torn down")

    # --- accessors ---
    @property
    def user_id(self) -> Optional[str]:
        return self.account.id if self.account else None

    @property
    def signed_in(self) -> bool:
        return self.account is not None

    @property
    def theme(self) -> ThemePreference:
        return self.profile.theme_preference if self.profile else ThemePreference.LIGHT

    async def set_theme(self, theme: ThemePreference) -> None:
        if self.account is None:
            return
        await self.api.set_theme(self.account.id, theme)
        await self.reload_profile()

    def watch(self, listener: ContextListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unwatch() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unwatch

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("context listener failed")
