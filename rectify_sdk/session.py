"""
Session lifecycle for the RECtify client

``SessionManager`` is the single owner of the authenticated ``User``. It is an
explicit handle: consumers receive the instance rather than reading a global.
Only the opaque token is persisted (through the credential store); the user
record is always re-fetched from the identity service.

Session operations must not overlap on one instance. Concurrent logins are
not deduplicated; the last write to ``user``/``is_loading`` wins.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .authorization import Permission, permission_mismatches, permissions_for, require_permission
from .client import IdentityServiceClient
from .config import ClientSettings, get_settings
from .credentials import FileCredentialStore, token_expired
from .exceptions import (
    APIError,
    CredentialStoreError,
    NetworkError,
    RectifyError,
    ValidationError,
)
from .models import (
    ApiResponse,
    Permissions,
    ProfileUpdate,
    SignupRequest,
    User,
    UserStats,
    normalize_email,
)

logger = logging.getLogger(__name__)

SessionListener = Callable[["SessionManager"], None]

LOGIN_FAILED = "Invalid email or password"
SIGNUP_FAILED = "Registration failed"
PROFILE_UPDATE_FAILED = "Failed to update profile"
CONNECTION_FAILED = "Unable to reach the server. Please try again."


def format_validation_error(error: PydanticValidationError) -> str:
    """Flatten a pydantic error into a one-line user-facing message"""
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item.get("loc", ()))
        parts.append(f"{field}: {item.get('msg')}" if field else item.get("msg", ""))
    return "; ".join(parts) or "Invalid input"


class SessionManager:
    """Drives login, signup, logout, profile updates and token bootstrap"""

    def __init__(self, client: IdentityServiceClient):
        self.client = client
        self.credentials = client.credentials
        self.user: Optional[User] = None
        # True until bootstrap() has run
        self.is_loading: bool = True
        self.last_error: Optional[str] = None
        self._listeners: List[SessionListener] = []
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Optional[ClientSettings] = None) -> 'SessionManager':
        """Build a manager with a file-backed credential store"""
        settings = settings or get_settings()
        store = FileCredentialStore(
            settings.credentials_path,
            storage_key=settings.token_storage_key,
            encryption_key=settings.encryption_key
        )
        client = IdentityServiceClient(settings.base_url, store, timeout=settings.timeout)
        return cls(client)

    # State accessors
    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def permissions(self) -> Optional[Permissions]:
        """Role-derived permissions of the current user"""
        if self.user is None:
            return None
        return permissions_for(self.user.role)

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Register a callback fired after every change to ``user``"""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def close(self) -> None:
        """Tear down; results of calls still in flight are discarded"""
        self._closed = True
        self._listeners.clear()

    # Lifecycle operations
    async def bootstrap(self) -> Optional[User]:
        """Restore the session from the stored token, once at process start"""
        try:
            token = self.credentials.get_token()
        except CredentialStoreError as e:
            logger.error(f"Stored session token unreadable; starting logged out: {e}")
            token = None

        if not token:
            self.is_loading = False
            return None

        if token_expired(token):
            logger.info("Stored session token has expired; clearing it")
            self._invalidate()
            self.is_loading = False
            return None

        self.is_loading = True
        response: Optional[ApiResponse] = None
        try:
            response = await self.client.get_current_user()
        except NetworkError as e:
            logger.error(f"Session bootstrap failed: {e}")
        except RectifyError as e:
            logger.warning(f"Stored session token rejected: {e.message}")
        except Exception:
            logger.exception("Unexpected error during session bootstrap")
        finally:
            self.is_loading = False

        if self._closed:
            return None

        if response is not None and response.success and response.user is not None:
            self._set_user(response.user)
            logger.info(f"Session restored for user {response.user.id}")
        else:
            self._invalidate()

        return self.user

    async def login(self, email: str, password: str) -> bool:
        """Authenticate with email and password; True on success"""
        return await self._authenticate(
            lambda: self.client.login(normalize_email(email), password),
            LOGIN_FAILED
        )

    async def signup(self, user_data: Dict[str, Any]) -> bool:
        """Register and sign in.

        ``user_data`` must carry email, password, first name, last name,
        company and emirate (snake_case or camelCase keys); role defaults to
        trader. Invalid input fails locally without a remote call.
        """
        self.last_error = None
        try:
            request = SignupRequest.model_validate(user_data)
        except PydanticValidationError as e:
            self.last_error = format_validation_error(e)
            logger.info(f"Signup rejected locally: {self.last_error}")
            return False

        return await self._authenticate(lambda: self.client.register(request), SIGNUP_FAILED)

    async def logout(self) -> None:
        """De-authenticate locally; the remote call is best-effort"""
        self.last_error = None
        try:
            if self.credentials.get_token():
                await self.client.logout()
        except Exception as e:
            logger.warning(f"Remote logout failed, clearing local session anyway: {e}")
        finally:
            self._invalidate()

    async def update_profile(self, updates: Dict[str, Any]) -> Optional[User]:
        """Apply profile changes and adopt the server-confirmed user.

        No-op without an active user. Fields other than name, company,
        emirate, profile image and preferences are dropped. On any failure the
        in-memory user is left untouched and the error is raised.
        """
        if self.user is None:
            logger.debug("Profile update ignored: no active session")
            return None

        self.last_error = None
        current_id = self.user.id
        try:
            try:
                update = ProfileUpdate.model_validate(updates)
            except PydanticValidationError as e:
                raise ValidationError(format_validation_error(e), validation_errors=e.errors())

            response = await self.client.update_profile(update)
            if not response.success or response.user is None:
                raise APIError(response.message or PROFILE_UPDATE_FAILED,
                               response_data=response.to_wire())
            if response.user.id != current_id:
                raise APIError("Profile update returned a different account")
        except NetworkError as e:
            self.last_error = CONNECTION_FAILED
            logger.error(f"Profile update failed: {e}")
            raise
        except RectifyError as e:
            self.last_error = e.message
            logger.warning(f"Profile update failed: {e.message}")
            raise

        if self._closed or self.user is None or self.user.id != current_id:
            return None

        self._set_user(response.user)
        return self.user

    async def fetch_user_stats(self) -> UserStats:
        """Platform user statistics; requires the manage-users permission"""
        require_permission(self.user, Permission.MANAGE_USERS)
        return await self.client.get_user_stats()

    # Internal state transitions
    async def _authenticate(self, call: Callable[[], Awaitable[ApiResponse]],
                            failure_message: str) -> bool:
        self.last_error = None
        self.is_loading = True
        try:
            response = await call()
            if self._closed:
                return False

            if response.success and response.token and response.user is not None:
                self._establish(response.token, response.user)
                return True

            self.last_error = response.message or failure_message
            logger.warning(f"Authentication rejected: {self.last_error}")
            return False
        except NetworkError as e:
            self.last_error = CONNECTION_FAILED
            logger.error(f"Authentication request failed: {e}")
            return False
        except RectifyError as e:
            self.last_error = e.message or failure_message
            logger.warning(f"Authentication rejected: {self.last_error}")
            return False
        except Exception:
            self.last_error = failure_message
            logger.exception("Unexpected error during authentication")
            return False
        finally:
            self.is_loading = False

    def _establish(self, token: str, user: User) -> None:
        # Token first: a failed write must not leave a user without a token
        try:
            self.credentials.set_token(token)
        except CredentialStoreError:
            self._clear_token()
            raise
        self._set_user(user)
        logger.info(f"Session established for user {user.id}")

    def _set_user(self, user: User) -> None:
        mismatches = permission_mismatches(user)
        if mismatches:
            logger.warning(
                f"Server permissions for user {user.id} differ from role "
                f"'{user.role.value}' on {[m.value for m in mismatches]}; gating uses the role"
            )
        self.user = user
        self._notify()

    def _invalidate(self) -> None:
        had_user = self.user is not None
        self.user = None
        self._clear_token()
        if had_user:
            self._notify()

    def _clear_token(self) -> None:
        try:
            self.credentials.clear()
        except CredentialStoreError as e:
            logger.error(f"Failed to clear stored session token: {e}")

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Session listener failed")
