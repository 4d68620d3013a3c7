"""
Authentication: provider contract, error taxonomy and the register/login
flows built on top of it.

Two providers are shipped: ``FirebaseAuthProvider`` talks to the Identity
Toolkit REST API with ``requests`` and keeps the session in the keyring;
``MemoryAuthProvider`` keeps accounts in-process for tests and demo mode.
"""
import asyncio
from enum import Enum
from typing import Callable, Dict, List, Optional

import requests
from requests import Session

from . import auth_storage
from .config import HTTP_TIMEOUT, IDENTITY_TOOLKIT_URL, PASSWORD_MIN_LENGTH, SECURE_TOKEN_URL, USERNAME_MIN_LENGTH
from .data_models import Account, Profile, ThemePreference
from .debug_log import get_logger
from .store import SERVER_TIMESTAMP, AlreadyExistsError, DocumentStore, new_id, utcnow
from .validator import USERNAME_PATTERN, ValidationError

logger = get_logger("auth")


class AuthErrorCode(str, Enum):
    EMAIL_IN_USE = "email_in_use"
    WEAK_PASSWORD = "weak_password"
    NOT_FOUND = "not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_INPUT = "invalid_input"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


AUTH_MESSAGES = {
    AuthErrorCode.EMAIL_IN_USE: "An account with this email already exists. Please try logging in instead.",
    AuthErrorCode.WEAK_PASSWORD: "Password must be at least 6 characters long",
    AuthErrorCode.NOT_FOUND: "No account found with this email address. Please sign up first.",
    AuthErrorCode.INVALID_CREDENTIALS: "Invalid email or password. Please check your credentials and try again.",
    AuthErrorCode.INVALID_INPUT: "Please enter a valid email address",
    AuthErrorCode.RATE_LIMITED: "Too many login attempts. Please wait a few minutes and try again.",
    AuthErrorCode.UNKNOWN: "Authentication failed. Please try again.",
}

# Identity Toolkit error strings
_FIREBASE_CODES = {
    "EMAIL_EXISTS": AuthErrorCode.EMAIL_IN_USE,
    "WEAK_PASSWORD": AuthErrorCode.WEAK_PASSWORD,
    "EMAIL_NOT_FOUND": AuthErrorCode.NOT_FOUND,
    "USER_NOT_FOUND": AuthErrorCode.NOT_FOUND,
    "INVALID_PASSWORD": AuthErrorCode.INVALID_CREDENTIALS,
    "INVALID_LOGIN_CREDENTIALS": AuthErrorCode.INVALID_CREDENTIALS,
    "INVALID_EMAIL": AuthErrorCode.INVALID_INPUT,
    "MISSING_PASSWORD": AuthErrorCode.INVALID_INPUT,
    "MISSING_EMAIL": AuthErrorCode.INVALID_INPUT,
    "TOO_MANY_ATTEMPTS_TRY_LATER": AuthErrorCode.RATE_LIMITED,
}


class AuthError(Exception):
    """Authentication related errors, carrying a user-facing message."""

    def __init__(self, code: AuthErrorCode, detail: str = ""):
        self.code = code
        self.detail = detail
        super().__init__(AUTH_MESSAGES[code])

    @property
    def user_message(self) -> str:
        return AUTH_MESSAGES[self.code]


class UsernameTakenError(ValidationError):
    def __init__(self, username: str):
        super().__init__("Username is already taken", field="username")
        self.username = username


AuthListener = Callable[[Optional[Account]], None]


class AuthProvider:
    """Interface of an identity provider."""

    async def sign_up(self, email: str, password: str) -> Account: ...
    async def sign_in(self, email: str, password: str) -> Account: ...
    async def sign_out(self) -> None: ...
    async def send_password_reset(self, email: str) -> None: ...
    async def update_display_name(self, name: str) -> None: ...
    def on_auth_state_changed(self, callback: AuthListener) -> Callable[[], None]: ...
    def current_account(self) -> Optional[Account]: ...

    @property
    def id_token(self) -> Optional[str]:
        return None


class _AuthStateMixin:
    """Listener bookkeeping shared by the providers."""

    def _init_state(self) -> None:
        self._account: Optional[Account] = None
        self._listeners: List[AuthListener] = []

    def current_account(self) -> Optional[Account]:
        return self._account

    def _set_account(self, account: Optional[Account]) -> None:
        self._account = account
        for listener in list(self._listeners):
            try:
                listener(account)
            except Exception:
                logger.exception("auth state listener failed")

    def on_auth_state_changed(self, callback: AuthListener) -> Callable[[], None]:
        """Register ``callback``; it fires immediately with the current account."""
        self._listeners.append(callback)
        callback(self._account)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe


class MemoryAuthProvider(_AuthStateMixin, AuthProvider):
    MAX_FAILED_ATTEMPTS = 5

    def __init__(self):
        self._init_state()
        self._accounts: Dict[str, Account] = {}
        self._passwords: Dict[str, str] = {}
        self._failures: Dict[str, int] = {}
        self.reset_requests: List[str] = []

    async def sign_up(self, email: str, password: str) -> Account:
        await asyncio.sleep(0)
        email = email.lower().strip()
        if "@" not in email:
            raise AuthError(AuthErrorCode.INVALID_INPUT, email)
        if email in self._accounts:
            raise AuthError(AuthErrorCode.EMAIL_IN_USE, email)
        if len(password) < PASSWORD_MIN_LENGTH:
            raise AuthError(AuthErrorCode.WEAK_PASSWORD)
        account = Account(id=new_id(), email=email, created_at=utcnow())
        self._accounts[email] = account
        self._passwords[email] = password
        self._set_account(account)
        return account

    async def sign_in(self, email: str, password: str) -> Account:
        await asyncio.sleep(0)
        email = email.lower().strip()
        if self._failures.get(email, 0) >= self.MAX_FAILED_ATTEMPTS:
            raise AuthError(AuthErrorCode.RATE_LIMITED, email)
        if email not in self._accounts:
            raise AuthError(AuthErrorCode.NOT_FOUND, email)
        if self._passwords[email] != password:
            self._failures[email] = self._failures.get(email, 0) + 1
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, email)
        self._failures.pop(email, None)
        self._set_account(self._accounts[email])
        return self._accounts[email]

    async def sign_out(self) -> None:
        await asyncio.sleep(0)
        self._set_account(None)

    async def send_password_reset(self, email: str) -> None:
        await asyncio.sleep(0)
        self.reset_requests.append(email.lower().strip())

    async def update_display_name(self, name: str) -> None:
        await asyncio.sleep(0)
        if self._account is None:
            raise AuthError(AuthErrorCode.NOT_FOUND, "not signed in")
        self._account.display_name = name


class FirebaseAuthProvider(_AuthStateMixin, AuthProvider):
    """Email/password auth through the Identity Toolkit REST API."""

    def __init__(self, api_key: str, session: Optional[Session] = None, timeout: float = HTTP_TIMEOUT,
                 persist: bool = True):
        self._init_state()
        self.api_key = api_key
        self.session: Session = session or requests.Session()
        self.timeout = timeout
        self.persist = persist
        self._tokens: Dict[str, str] = {}

    @property
    def id_token(self) -> Optional[str]:
        return self._tokens.get("id_token")

    # --- helpers ---
    @staticmethod
    def _map_error(resp: requests.Response) -> AuthError:
        try:
            message = resp.json()["error"]["message"]
        except (ValueError, KeyError, TypeError):
            message = resp.text
        # messages look like "WEAK_PASSWORD : Password should be at least 6 characters"
        key = (message or "").split(":", 1)[0].strip()
        return AuthError(_FIREBASE_CODES.get(key, AuthErrorCode.UNKNOWN), message)

    def _post(self, url: str, payload: Dict, form: bool = False) -> Dict:
        try:
            if form:
                resp = self.session.post(url, params={"key": self.api_key}, data=payload, timeout=self.timeout)
            else:
                resp = self.session.post(url, params={"key": self.api_key}, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.exception("auth request failed")
            raise AuthError(AuthErrorCode.UNKNOWN, str(e)) from e
        if not resp.ok:
            err = self._map_error(resp)
            logger.debug("auth HTTP %s: %s", resp.status_code, err.detail)
            raise err
        return resp.json()

    async def _identity(self, method: str, payload: Dict) -> Dict:
        return await asyncio.to_thread(self._post, f"{IDENTITY_TOOLKIT_URL}/accounts:{method}", payload)

    def _accept(self, body: Dict) -> Account:
        self._tokens = {"id_token": body.get("idToken", ""), "refresh_token": body.get("refreshToken", "")}
        account = Account(id=body["localId"], email=body.get("email") or "", display_name=body.get("displayName") or "")
        if self.persist:
            try:
                auth_storage.save_session(self._tokens, account.id, account.email)
            except Exception:
                logger.warning("could not persist session (non-fatal)", exc_info=True)
        self._set_account(account)
        return account

    # --- provider API ---
    async def sign_up(self, email: str, password: str) -> Account:
        body = await self._identity("signUp", {"email": email, "password": password, "returnSecureToken": True})
        return self._accept(body)

    async def sign_in(self, email: str, password: str) -> Account:
        body = await self._identity(
            "signInWithPassword", {"email": email, "password": password, "returnSecureToken": True}
        )
        return self._accept(body)

    async def sign_out(self) -> None:
        self._tokens = {}
        if self.persist:
            auth_storage.clear_session()
        self._set_account(None)

    async def send_password_reset(self, email: str) -> None:
        await self._identity("sendOobCode", {"requestType": "PASSWORD_RESET", "email": email})

    async def update_display_name(self, name: str) -> None:
        if not self.id_token:
            raise AuthError(AuthErrorCode.NOT_FOUND, "not signed in")
        await self._identity("update", {"idToken": self.id_token, "displayName": name, "returnSecureToken": False})
        if self._account is not None:
            self._account.display_name = name

    async def restore(self) -> Optional[Account]:
        """Resume the keyring session by exchanging its refresh token."""
        stored = auth_storage.load_session()
        if not stored or not stored["tokens"].get("refresh_token"):
            return None
        try:
            body = await asyncio.to_thread(
                self._post,
                SECURE_TOKEN_URL,
                {"grant_type": "refresh_token", "refresh_token": stored["tokens"]["refresh_token"]},
                True,
            )
        except AuthError:
            logger.debug("stored session could not be refreshed")
            auth_storage.clear_session()
            return None
        self._tokens = {"id_token": body.get("id_token", ""), "refresh_token": body.get("refresh_token", "")}
        account = Account(id=body.get("user_id") or stored["user_id"], email=stored.get("email") or "")
        self._set_account(account)
        return account


class AuthService:
    """Register/login flows: validation, username reservation, profile creation."""

    def __init__(self, provider: AuthProvider, store: DocumentStore):
        self.provider = provider
        self.store = store

    @staticmethod
    def validate_registration(email: str, password: str, name: str, username: str) -> None:
        if not email or not password or not name or not username:
            raise ValidationError("All fields are required")
        if len(password) < PASSWORD_MIN_LENGTH:
            raise ValidationError("Password must be at least 6 characters long", field="password")
        if len(username) < USERNAME_MIN_LENGTH:
            raise ValidationError("Username must be at least 3 characters long", field="username")
        if not USERNAME_PATTERN.fullmatch(username):
            raise ValidationError("Username can only contain letters, numbers, and underscores", field="username")

    async def register(self, email: str, password: str, name: str, username: str) -> Profile:
        self.validate_registration(email, password, name, username)
        email = email.lower().strip()
        username = username.lower().strip()
        name = name.strip()

        # Claim the username first; the create fails if anyone holds it.
        try:
            await self.store.create("usernames", username, {"user_id": None, "email": email,
                                                            "created_at": SERVER_TIMESTAMP})
        except AlreadyExistsError:
            raise UsernameTakenError(username)

        data = {
            "name": name,
            "username": username,
            "email": email,
            "avatar": None,
            "theme_preference": ThemePreference.LIGHT.value,
            "color_theme": "green",
            "created_at": SERVER_TIMESTAMP,
            "updated_at": SERVER_TIMESTAMP,
        }
        # Any failure past the claim hands the username back.
        try:
            account = await self.provider.sign_up(email, password)
            await self.provider.update_display_name(name)
            await self.store.update("usernames", username, {"user_id": account.id})
            await self.store.set("profiles", account.id, data)
        except Exception:
            logger.warning("registration of @%s failed, releasing the username", username)
            await self.store.delete("usernames", username)
            raise

        logger.debug("registered %s as @%s", account.id, username)
        doc = await self.store.get("profiles", account.id)
        return Profile.from_document(doc)

    async def login(self, email: str, password: str) -> Account:
        if not email or not password:
            raise ValidationError("Email and password are required")
        if "@" not in email:
            raise ValidationError("Please enter a valid email address", field="email")
        return await self.provider.sign_in(email.lower().strip(), password)

    async def reset_password(self, email: str) -> None:
        try:
            await self.provider.send_password_reset(email.lower().strip())
        except AuthError:
            logger.exception("password reset failed")
            raise

    async def logout(self) -> None:
        await self.provider.sign_out()
