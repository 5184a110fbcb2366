"""
Tests for role-based permissions and dashboard tab gating.
"""

import pytest

from rectify_sdk.authorization import (
    DASHBOARD_TABS,
    Permission,
    has_permission,
    is_tab_visible,
    permission_mismatches,
    permissions_for,
    require_permission,
    visible_tabs,
)
from rectify_sdk.exceptions import AuthorizationError
from rectify_sdk.models import UserRole
from tests.test_helpers.test_data_factory import UserFactory


EXPECTED = {
    # role: (trade, register facilities, view analytics, export reports, manage users)
    "trader": (True, False, True, True, False),
    "facility-owner": (True, True, True, True, False),
    "compliance-officer": (False, False, True, True, True),
    "admin": (True, True, True, True, True),
}


class TestPermissionTable:

    @pytest.mark.parametrize("role,flags", list(EXPECTED.items()))
    def test_role_table(self, role, flags):
        permissions = permissions_for(role)

        assert (
            permissions.can_trade,
            permissions.can_register_facilities,
            permissions.can_view_analytics,
            permissions.can_export_reports,
            permissions.can_manage_users,
        ) == flags

    def test_accepts_enum_member(self):
        assert permissions_for(UserRole.ADMIN) == permissions_for("admin")

    def test_unknown_role_is_rejected(self):
        with pytest.raises(ValueError):
            permissions_for("superuser")

    def test_every_role_is_covered(self):
        for role in UserRole:
            assert permissions_for(role) is not None


class TestChecks:

    def test_has_permission_uses_role(self):
        officer = UserFactory.create(role="compliance-officer")

        assert has_permission(officer, Permission.MANAGE_USERS) is True
        assert has_permission(officer, Permission.TRADE) is False

    def test_has_permission_without_user(self):
        assert has_permission(None, Permission.VIEW_ANALYTICS) is False

    def test_require_permission_raises(self, trader):
        with pytest.raises(AuthorizationError) as exc_info:
            require_permission(trader, Permission.REGISTER_FACILITIES)

        assert "trader" in exc_info.value.message

    def test_require_permission_without_user(self):
        with pytest.raises(AuthorizationError, match="Not authenticated"):
            require_permission(None, Permission.TRADE)

    def test_require_permission_passes(self, trader):
        require_permission(trader, Permission.TRADE)

    def test_server_grant_does_not_override_role(self):
        payload = UserFactory.payload()
        payload["permissions"]["canRegisterFacilities"] = True
        user = UserFactory.create(**payload)

        assert user.permissions.can_register_facilities is True
        assert has_permission(user, Permission.REGISTER_FACILITIES) is False

    def test_permission_mismatches(self):
        payload = UserFactory.payload()
        payload["permissions"]["canRegisterFacilities"] = True
        payload["permissions"]["canTrade"] = False
        user = UserFactory.create(**payload)

        assert set(permission_mismatches(user)) == {
            Permission.REGISTER_FACILITIES,
            Permission.TRADE,
        }

    def test_no_mismatches_for_consistent_user(self, trader):
        assert permission_mismatches(trader) == []


class TestDashboardTabs:

    def _values(self, user):
        return [tab.value for tab in visible_tabs(user)]

    def test_trader_tabs(self, trader):
        assert self._values(trader) == [
            "overview", "trading", "portfolio", "market", "ei-reports", "rec-registration"
        ]

    def test_compliance_officer_cannot_see_trading(self):
        officer = UserFactory.create(role="compliance-officer")

        values = self._values(officer)

        assert "trading" not in values
        assert "admin" not in values

    def test_admin_sees_every_tab(self):
        admin = UserFactory.create(role="admin")

        assert self._values(admin) == [tab.value for tab in DASHBOARD_TABS]

    def test_admin_tab_follows_role_not_permissions(self):
        officer = UserFactory.create(role="compliance-officer")
        admin_tab = next(tab for tab in DASHBOARD_TABS if tab.value == "admin")

        # manage users alone does not unlock the admin tab
        assert has_permission(officer, Permission.MANAGE_USERS) is True
        assert is_tab_visible(admin_tab, officer) is False

    def test_no_user_sees_ungated_tabs_only(self):
        values = self._values(None)

        assert "trading" not in values
        assert "admin" not in values
        assert "overview" in values
