"""
Password recovery flows

``PasswordRecoveryFlow`` walks email -> code verification. Once the code is
verified the caller opens a ``PasswordResetFlow`` for the same email to set
the new password. Neither flow touches the live session.

Each flow instance allows one outstanding remote call; submissions made while
a call is in flight are refused. ``error`` and ``success`` are mutually
exclusive and reset at the start of every submission.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .client import IdentityServiceClient
from .config import ClientSettings
from .exceptions import NetworkError, RectifyError
from .models import ApiResponse, normalize_email

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
MIN_PASSWORD_LENGTH = 6

_EMAIL = TypeAdapter(EmailStr)


class RecoveryStep(str, Enum):
    AWAITING_EMAIL = "awaiting_email"
    AWAITING_CODE = "awaiting_code"
    VERIFIED = "verified"


class RecoveryStateError(RectifyError):
    """Raised when an operation is invoked in a step that does not allow it"""
    pass


async def _invoke(callback: Optional[Callable[..., Any]], *args) -> None:
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        # The flow outcome is already recorded
        logger.exception("Recovery completion callback failed")


class _RecoveryFlowBase:
    """Loading guard, message handling and teardown shared by both flows"""

    def __init__(self, client: IdentityServiceClient):
        self.client = client
        self.error: Optional[str] = None
        self.success: Optional[str] = None
        self.is_loading = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Discard the flow; late results are ignored and callbacks never fire"""
        self._closed = True

    def _begin(self) -> bool:
        if self._closed:
            return False
        if self.is_loading:
            logger.debug(f"{type(self).__name__}: submission ignored while a request is pending")
            return False
        self.error = None
        self.success = None
        return True

    def _fail(self, message: str) -> bool:
        if not self._closed:
            self.success = None
            self.error = message
        return False

    def _succeed(self, message: str) -> None:
        self.error = None
        self.success = message

    async def _call(self, call: Callable[[], Awaitable[ApiResponse]],
                    fallback_message: str) -> Optional[ApiResponse]:
        self.is_loading = True
        try:
            response = await call()
        except NetworkError as e:
            logger.error(f"{type(self).__name__}: request failed: {e}")
            self._fail(fallback_message)
            return None
        except RectifyError as e:
            logger.warning(f"{type(self).__name__}: request rejected: {e.message}")
            self._fail(e.message or fallback_message)
            return None
        except Exception:
            logger.exception(f"{type(self).__name__}: unexpected error")
            self._fail(fallback_message)
            return None
        finally:
            self.is_loading = False

        if self._closed:
            return None
        return response


class PasswordRecoveryFlow(_RecoveryFlowBase):
    """Email -> verification code state machine.

    ``on_verified`` is called once with the verified email; it may be a plain
    function or a coroutine function.
    """

    def __init__(self, client: IdentityServiceClient,
                 on_verified: Optional[Callable[[str], Any]] = None):
        super().__init__(client)
        self.on_verified = on_verified
        self.email = ""
        self.code = ""
        self.step = RecoveryStep.AWAITING_EMAIL

    def _require_step(self, step: RecoveryStep, operation: str) -> None:
        if self.step != step:
            raise RecoveryStateError(
                f"Cannot {operation} in step '{self.step.value}'"
            )

    async def submit_email(self, email: str) -> bool:
        """Request a reset code; moves to AWAITING_CODE on success"""
        self._require_step(RecoveryStep.AWAITING_EMAIL, "submit email")
        if not self._begin():
            return False

        email = normalize_email(email or "")
        if not email:
            return self._fail("Please enter your email address")
        try:
            _EMAIL.validate_python(email)
        except PydanticValidationError:
            return self._fail("Please enter a valid email address")

        self.email = email
        response = await self._call(
            lambda: self.client.forgot_password(email),
            "Failed to send verification code. Please try again."
        )
        if response is None:
            return False
        if not response.success:
            return self._fail(response.message or "Failed to send verification code")

        self._succeed("Verification code sent to your email")
        self.step = RecoveryStep.AWAITING_CODE
        logger.info("Password reset code requested")
        return True

    async def submit_code(self, code: str) -> bool:
        """Verify the emailed code; fires ``on_verified`` on success"""
        self._require_step(RecoveryStep.AWAITING_CODE, "submit code")
        if not self._begin():
            return False

        code = (code or "").strip().upper()
        self.code = code
        if len(code) != CODE_LENGTH:
            return self._fail(f"Please enter the {CODE_LENGTH}-character verification code")

        response = await self._call(
            lambda: self.client.verify_reset_code(self.email, code),
            "Failed to verify code. Please try again."
        )
        if response is None:
            return False
        if not response.success:
            return self._fail(response.message or "Invalid verification code")

        self._succeed("Code verified successfully")
        self.step = RecoveryStep.VERIFIED
        logger.info("Password reset code verified")
        await _invoke(self.on_verified, self.email)
        return True

    async def resend_code(self) -> bool:
        """Clear the code input and request a fresh code; the step is unchanged"""
        self._require_step(RecoveryStep.AWAITING_CODE, "resend code")
        if not self._begin():
            return False

        self.code = ""
        response = await self._call(
            lambda: self.client.forgot_password(self.email),
            "Failed to resend code. Please try again."
        )
        if response is None:
            return False
        if not response.success:
            return self._fail(response.message or "Failed to resend verification code")

        self._succeed("New verification code sent to your email")
        return True


class PasswordResetFlow(_RecoveryFlowBase):
    """Sets a new password for an email whose reset code was verified.

    On success ``on_complete`` fires once, after ``success_delay`` seconds so
    the confirmation message can be shown.
    """

    def __init__(self, client: IdentityServiceClient, email: str,
                 on_complete: Optional[Callable[[], Any]] = None,
                 success_delay: float = 2.0):
        super().__init__(client)
        self.email = normalize_email(email)
        self.on_complete = on_complete
        self.success_delay = success_delay
        self.completed = False

    @classmethod
    def from_settings(cls, client: IdentityServiceClient, email: str,
                      settings: ClientSettings,
                      on_complete: Optional[Callable[[], Any]] = None) -> 'PasswordResetFlow':
        return cls(client, email, on_complete=on_complete,
                   success_delay=settings.reset_success_delay)

    async def submit(self, code: str, new_password: str, confirm_password: str) -> bool:
        if self.completed or not self._begin():
            return False

        code = (code or "").strip().upper()
        if len(code) != CODE_LENGTH:
            return self._fail(f"Please enter the {CODE_LENGTH}-character verification code")
        if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
            return self._fail(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )
        if new_password != confirm_password:
            return self._fail("Passwords do not match")

        response = await self._call(
            lambda: self.client.reset_password(self.email, code, new_password),
            "Failed to reset password. Please try again."
        )
        if response is None:
            return False
        if not response.success:
            return self._fail(response.message or "Failed to reset password")

        self._succeed(
            "Password has been reset successfully! You can now login with your new password."
        )
        self.completed = True
        logger.info("Password reset completed")

        if self.success_delay > 0:
            await asyncio.sleep(self.success_delay)
        if not self._closed:
            await _invoke(self.on_complete)
        return True
