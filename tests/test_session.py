"""
Tests for the SessionManager.

This module tests:
- Token bootstrap at startup
- Login and signup success/failure contracts
- Unconditional logout
- Server-confirmed profile updates
- Teardown while a call is in flight
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import jwt
import pytest

from rectify_sdk.credentials import FileCredentialStore
from rectify_sdk.session import CONNECTION_FAILED, SessionManager
from rectify_sdk.exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    CredentialStoreError,
    NetworkError,
    ValidationError,
)
from rectify_sdk.models import UserRole, UserStats
from tests.test_helpers.test_data_factory import ResponseFactory, UserFactory

SIGNING_KEY = "test-signing-key-with-at-least-32-bytes!"


def signed_token(expires_in: timedelta) -> str:
    exp = datetime.now(timezone.utc) + expires_in
    return jwt.encode({"sub": "1", "exp": exp}, SIGNING_KEY, algorithm="HS256")


@pytest.fixture
def session(mock_client):
    return SessionManager(mock_client)


@pytest.fixture
def signup_data():
    return {
        "email": "New.User@Rectify.ae",
        "password": "secret1",
        "firstName": "New",
        "lastName": "User",
        "company": "RECtify",
        "emirate": "Dubai"
    }


class TestBootstrap:
    """Restoring a session from the stored token."""

    @pytest.mark.asyncio
    async def test_no_token_makes_no_remote_call(self, session, mock_client):
        assert session.is_loading is True

        user = await session.bootstrap()

        assert user is None
        assert session.user is None
        assert session.is_loading is False
        mock_client.get_current_user.assert_not_called()

    @pytest.mark.asyncio
    async def test_valid_token_restores_user(self, session, mock_client, credential_store):
        credential_store.set_token("opaque-token")
        mock_client.get_current_user.return_value = ResponseFactory.ok(user=UserFactory.payload())

        user = await session.bootstrap()

        assert user is not None
        assert session.user.email == "fatima.hassan@masdar.ae"
        assert session.is_authenticated is True
        assert session.is_loading is False
        assert credential_store.get_token() == "opaque-token"

    @pytest.mark.asyncio
    async def test_rejected_token_is_cleared(self, session, mock_client, credential_store):
        credential_store.set_token("revoked-token")
        mock_client.get_current_user.side_effect = AuthenticationError("Token is not valid", status_code=401)

        user = await session.bootstrap()

        assert user is None
        assert session.user is None
        assert credential_store.get_token() is None
        assert session.is_loading is False

    @pytest.mark.asyncio
    async def test_unsuccessful_response_clears_token(self, session, mock_client, credential_store):
        credential_store.set_token("orphan-token")
        mock_client.get_current_user.return_value = ResponseFactory.failed("User not found")

        await session.bootstrap()

        assert session.user is None
        assert credential_store.get_token() is None

    @pytest.mark.asyncio
    async def test_transport_failure_clears_token(self, session, mock_client, credential_store):
        credential_store.set_token("opaque-token")
        mock_client.get_current_user.side_effect = NetworkError("Connection refused")

        await session.bootstrap()

        assert session.user is None
        assert credential_store.get_token() is None
        assert session.is_loading is False

    @pytest.mark.asyncio
    async def test_unreadable_token_file_starts_logged_out(self, mock_client, tmp_path):
        # A directory where the credentials file should be can be neither read nor removed
        path = tmp_path / "credentials.json"
        path.mkdir()
        mock_client.credentials = FileCredentialStore(str(path))
        session = SessionManager(mock_client)

        user = await session.bootstrap()

        assert user is None
        assert session.user is None
        assert session.is_loading is False
        mock_client.get_current_user.assert_not_called()

    @pytest.mark.asyncio
    async def test_expired_jwt_is_cleared_without_remote_call(self, session, mock_client, credential_store):
        credential_store.set_token(signed_token(timedelta(hours=-1)))

        await session.bootstrap()

        assert credential_store.get_token() is None
        assert session.is_loading is False
        mock_client.get_current_user.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpired_jwt_is_checked_remotely(self, session, mock_client, credential_store):
        credential_store.set_token(signed_token(timedelta(hours=1)))
        mock_client.get_current_user.return_value = ResponseFactory.ok(user=UserFactory.payload())

        await session.bootstrap()

        mock_client.get_current_user.assert_awaited_once()
        assert session.is_authenticated is True


class TestLogin:
    """Credential login."""

    @pytest.mark.asyncio
    async def test_successful_login_persists_token_and_user(self, session, mock_client, credential_store):
        mock_client.login.return_value = ResponseFactory.ok(token="jwt-token", user=UserFactory.payload())

        result = await session.login(" Fatima.Hassan@Masdar.ae ", "demo123")

        assert result is True
        mock_client.login.assert_awaited_once_with("fatima.hassan@masdar.ae", "demo123")
        assert credential_store.get_token() == "jwt-token"
        assert session.user.id == "1"
        assert session.is_loading is False
        assert session.last_error is None

    @pytest.mark.asyncio
    async def test_invalid_credentials_leave_state_unchanged(self, session, mock_client, credential_store):
        mock_client.login.return_value = ResponseFactory.failed("Invalid credentials")

        result = await session.login("fatima.hassan@masdar.ae", "wrong")

        assert result is False
        assert session.user is None
        assert credential_store.get_token() is None
        assert session.is_loading is False
        assert session.last_error == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_response_without_token_is_a_failure(self, session, mock_client, credential_store):
        mock_client.login.return_value = ResponseFactory.ok(user=UserFactory.payload())

        assert await session.login("fatima.hassan@masdar.ae", "demo123") is False
        assert session.user is None
        assert credential_store.get_token() is None

    @pytest.mark.asyncio
    async def test_transport_error_returns_false_with_generic_message(self, session, mock_client):
        mock_client.login.side_effect = NetworkError("Connection reset")

        assert await session.login("fatima.hassan@masdar.ae", "demo123") is False
        assert session.last_error == CONNECTION_FAILED
        assert session.is_loading is False

    @pytest.mark.asyncio
    async def test_failed_login_keeps_existing_user(self, session, mock_client, credential_store):
        mock_client.login.return_value = ResponseFactory.ok(token="first", user=UserFactory.payload())
        await session.login("fatima.hassan@masdar.ae", "demo123")

        mock_client.login.side_effect = AuthenticationError("Invalid credentials", status_code=401)
        assert await session.login("other@rectify.ae", "pw") is False

        assert session.user.id == "1"
        assert credential_store.get_token() == "first"

    @pytest.mark.asyncio
    async def test_is_loading_true_while_call_is_pending(self, session, mock_client):
        seen = []

        async def slow_login(email, password):
            seen.append(session.is_loading)
            return ResponseFactory.failed("Invalid credentials")

        mock_client.login.side_effect = slow_login

        await session.login("fatima.hassan@masdar.ae", "pw")

        assert seen == [True]
        assert session.is_loading is False

    @pytest.mark.asyncio
    async def test_token_write_failure_leaves_session_unauthenticated(self, session, mock_client, credential_store):
        mock_client.login.return_value = ResponseFactory.ok(token="jwt-token", user=UserFactory.payload())
        credential_store.set_token = MagicMock(side_effect=CredentialStoreError("disk full"))

        assert await session.login("fatima.hassan@masdar.ae", "demo123") is False
        assert session.user is None
        assert session.last_error == "disk full"


class TestSignup:
    """Registration."""

    @pytest.mark.asyncio
    async def test_signup_defaults_role_to_trader(self, session, mock_client, credential_store, signup_data):
        mock_client.register.return_value = ResponseFactory.ok(
            token="new-token",
            user=UserFactory.payload(id="42", email="new.user@rectify.ae")
        )

        assert await session.signup(signup_data) is True

        request = mock_client.register.await_args.args[0]
        assert request.role == UserRole.TRADER
        assert request.email == "new.user@rectify.ae"
        assert credential_store.get_token() == "new-token"
        assert session.user.id == "42"

    @pytest.mark.asyncio
    async def test_signup_keeps_requested_role(self, session, mock_client, signup_data):
        mock_client.register.return_value = ResponseFactory.ok(
            token="t", user=UserFactory.payload(role="facility-owner")
        )
        signup_data["role"] = "facility-owner"

        assert await session.signup(signup_data) is True
        assert mock_client.register.await_args.args[0].role == UserRole.FACILITY_OWNER

    @pytest.mark.parametrize("missing", ["email", "password", "firstName", "lastName", "company", "emirate"])
    @pytest.mark.asyncio
    async def test_missing_required_field_fails_locally(self, session, mock_client, signup_data, missing):
        del signup_data[missing]

        assert await session.signup(signup_data) is False
        assert session.last_error
        mock_client.register.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_email_fails_locally(self, session, mock_client, signup_data):
        signup_data["email"] = "not-an-email"

        assert await session.signup(signup_data) is False
        mock_client.register.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_emirate_fails_locally(self, session, mock_client, signup_data):
        signup_data["emirate"] = "Muscat"

        assert await session.signup(signup_data) is False
        assert "emirate" in session.last_error
        mock_client.register.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_account_is_reported_verbatim(self, session, mock_client, signup_data):
        mock_client.register.return_value = ResponseFactory.failed("User already exists with this email")

        assert await session.signup(signup_data) is False
        assert session.last_error == "User already exists with this email"
        assert session.user is None
        assert session.is_loading is False


class TestLogout:
    """Logout is unconditional."""

    @pytest.mark.asyncio
    async def test_logout_clears_user_and_token(self, session, mock_client, credential_store):
        mock_client.login.return_value = ResponseFactory.ok(token="jwt", user=UserFactory.payload())
        await session.login("fatima.hassan@masdar.ae", "demo123")

        await session.logout()

        mock_client.logout.assert_awaited_once()
        assert session.user is None
        assert credential_store.get_token() is None

    @pytest.mark.asyncio
    async def test_logout_when_remote_call_raises(self, session, mock_client, credential_store):
        mock_client.login.return_value = ResponseFactory.ok(token="jwt", user=UserFactory.payload())
        await session.login("fatima.hassan@masdar.ae", "demo123")
        mock_client.logout.side_effect = NetworkError("Connection refused")

        await session.logout()

        assert session.user is None
        assert credential_store.get_token() is None

    @pytest.mark.asyncio
    async def test_logout_after_unexpected_error(self, session, mock_client, credential_store):
        credential_store.set_token("jwt")
        mock_client.logout.side_effect = RuntimeError("unexpected")

        await session.logout()

        assert credential_store.get_token() is None

    @pytest.mark.asyncio
    async def test_logout_without_token_skips_remote_call(self, session, mock_client):
        await session.logout()

        mock_client.logout.assert_not_called()
        assert session.user is None


class TestUpdateProfile:
    """Server-confirmed profile updates."""

    @pytest.mark.asyncio
    async def test_no_active_user_is_a_no_op(self, session, mock_client):
        result = await session.update_profile({"company": "ACME"})

        assert result is None
        mock_client.update_profile.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_adopts_server_value(self, session, mock_client):
        await self._login(session, mock_client)
        mock_client.update_profile.return_value = ResponseFactory.ok(
            user=UserFactory.payload(company="Server Co", lastName="Confirmed")
        )

        user = await session.update_profile({"company": "ACME"})

        # Server value wins over the requested value
        assert user.company == "Server Co"
        assert session.user.last_name == "Confirmed"

    @pytest.mark.asyncio
    async def test_privileged_fields_are_dropped(self, session, mock_client):
        await self._login(session, mock_client)
        mock_client.update_profile.return_value = ResponseFactory.ok(user=UserFactory.payload())

        await session.update_profile({
            "company": "ACME",
            "role": "admin",
            "permissions": {"canManageUsers": True}
        })

        update = mock_client.update_profile.await_args.args[0]
        assert update.to_wire(exclude_unset=True) == {"company": "ACME"}

    @pytest.mark.asyncio
    async def test_remote_failure_raises_and_keeps_user(self, session, mock_client):
        await self._login(session, mock_client)
        before = session.user
        mock_client.update_profile.return_value = ResponseFactory.failed("Validation failed")

        with pytest.raises(APIError) as exc_info:
            await session.update_profile({"company": "ACME"})

        assert exc_info.value.message == "Validation failed"
        assert session.user is before
        assert session.last_error == "Validation failed"

    @pytest.mark.asyncio
    async def test_transport_failure_raises_and_keeps_user(self, session, mock_client):
        await self._login(session, mock_client)
        before = session.user
        mock_client.update_profile.side_effect = NetworkError("timeout")

        with pytest.raises(NetworkError):
            await session.update_profile({"company": "ACME"})

        assert session.user is before
        assert session.last_error == CONNECTION_FAILED

    @pytest.mark.asyncio
    async def test_invalid_input_fails_locally(self, session, mock_client):
        await self._login(session, mock_client)

        with pytest.raises(ValidationError):
            await session.update_profile({"emirate": "Atlantis"})

        mock_client.update_profile.assert_not_called()

    @pytest.mark.asyncio
    async def test_response_for_other_account_is_rejected(self, session, mock_client):
        await self._login(session, mock_client)
        mock_client.update_profile.return_value = ResponseFactory.ok(user=UserFactory.payload(id="99"))

        with pytest.raises(APIError):
            await session.update_profile({"company": "ACME"})

        assert session.user.id == "1"

    @staticmethod
    async def _login(session, mock_client):
        mock_client.login.return_value = ResponseFactory.ok(token="jwt", user=UserFactory.payload())
        assert await session.login("fatima.hassan@masdar.ae", "demo123") is True


class TestPermissionsAndStats:

    @pytest.mark.asyncio
    async def test_permissions_are_role_derived(self, session, mock_client):
        # Server claims more than the role grants
        payload = UserFactory.payload()
        payload["permissions"]["canManageUsers"] = True
        mock_client.login.return_value = ResponseFactory.ok(token="jwt", user=payload)

        await session.login("fatima.hassan@masdar.ae", "demo123")

        assert session.user.permissions.can_manage_users is True
        assert session.permissions.can_manage_users is False

    @pytest.mark.asyncio
    async def test_stats_require_manage_users(self, session, mock_client):
        mock_client.login.return_value = ResponseFactory.ok(token="jwt", user=UserFactory.payload())
        await session.login("fatima.hassan@masdar.ae", "demo123")

        with pytest.raises(AuthorizationError):
            await session.fetch_user_stats()

        mock_client.get_user_stats.assert_not_called()

    @pytest.mark.asyncio
    async def test_stats_for_compliance_officer(self, session, mock_client):
        mock_client.login.return_value = ResponseFactory.ok(
            token="jwt", user=UserFactory.payload(role="compliance-officer")
        )
        mock_client.get_user_stats.return_value = UserStats(total_users=3)
        await session.login("omar.khalil@dewa.gov.ae", "demo123")

        stats = await session.fetch_user_stats()

        assert stats.total_users == 3

    @pytest.mark.asyncio
    async def test_stats_without_session(self, session):
        with pytest.raises(AuthorizationError):
            await session.fetch_user_stats()


class TestListenersAndTeardown:

    @pytest.mark.asyncio
    async def test_listeners_see_login_and_logout(self, session, mock_client):
        events = []
        session.add_listener(lambda s: events.append(s.user.id if s.user else None))
        mock_client.login.return_value = ResponseFactory.ok(token="jwt", user=UserFactory.payload())

        await session.login("fatima.hassan@masdar.ae", "demo123")
        await session.logout()

        assert events == ["1", None]

    @pytest.mark.asyncio
    async def test_removed_listener_is_not_called(self, session, mock_client):
        events = []
        remove = session.add_listener(lambda s: events.append(s.user))
        remove()
        mock_client.login.return_value = ResponseFactory.ok(token="jwt", user=UserFactory.payload())

        await session.login("fatima.hassan@masdar.ae", "demo123")

        assert events == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_login(self, session, mock_client):
        def broken(_):
            raise RuntimeError("listener bug")

        session.add_listener(broken)
        mock_client.login.return_value = ResponseFactory.ok(token="jwt", user=UserFactory.payload())

        assert await session.login("fatima.hassan@masdar.ae", "demo123") is True

    @pytest.mark.asyncio
    async def test_result_arriving_after_close_is_discarded(self, session, mock_client, credential_store):
        release = asyncio.Event()

        async def pending_login(email, password):
            await release.wait()
            return ResponseFactory.ok(token="late-token", user=UserFactory.payload())

        mock_client.login.side_effect = pending_login

        task = asyncio.create_task(session.login("fatima.hassan@masdar.ae", "demo123"))
        await asyncio.sleep(0)
        session.close()
        release.set()

        assert await task is False
        assert session.user is None
        assert credential_store.get_token() is None
        assert session.closed is True
